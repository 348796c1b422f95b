"""
Tests for the CLI interface.
"""

from datetime import datetime, timedelta, timezone

import pytest
import yaml
from typer.testing import CliRunner

from claude_usage_core.cli.main import EXIT_CODE_CONFIG_ERROR, EXIT_CODE_OK, _format_window, app

runner = CliRunner()


@pytest.fixture
def config_path(tmp_path, projects_dir, write_session, make_record):
    """A config file pointing at a small usage tree."""
    write_session("-Users-me-app", "s1", [
        make_record("2025-01-01T12:00:00Z", cost=1.00, message_id="m1", request_id="r1"),
        make_record("2025-01-01T12:30:00Z", cost=2.00, message_id="m2", request_id="r2"),
    ])
    write_session("-Users-me-lib", "s2", [
        make_record("2025-01-02T12:00:00Z", cost=0.50, model="claude-opus-4-5"),
        make_record("2025-01-02T12:05:00Z", cost=2.00, message_id="m2", request_id="r2"),
    ])
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump({"projects_dir": str(projects_dir), "timezone": "UTC"}))
    return str(path)


class TestCLI:
    """Test CLI commands."""

    def test_no_command_prints_hint(self, config_path):
        result = runner.invoke(app, ["--config", config_path])
        assert result.exit_code == EXIT_CODE_OK
        assert "--help" in result.output

    def test_stats(self, config_path):
        """Test overall totals with the duplicate removed."""
        result = runner.invoke(app, ["--config", config_path, "stats"])
        assert result.exit_code == EXIT_CODE_OK
        assert "Total cost: $3.50" in result.output
        assert "Sessions: 2" in result.output

    def test_stats_date_range(self, config_path):
        result = runner.invoke(app, ["--config", config_path, "stats", "--since", "2025-01-02", "--until", "2025-01-02"])
        assert result.exit_code == EXIT_CODE_OK
        assert "Total cost: $0.50" in result.output

    def test_stats_open_ended_range(self, config_path):
        result = runner.invoke(app, ["--config", config_path, "stats", "--until", "2025-01-01"])
        assert result.exit_code == EXIT_CODE_OK
        assert "Total cost: $3.00" in result.output

    def test_stats_bad_date(self, config_path):
        result = runner.invoke(app, ["--config", config_path, "stats", "--since", "last week"])
        assert result.exit_code != EXIT_CODE_OK

    def test_daily(self, config_path):
        result = runner.invoke(app, ["--config", config_path, "daily"])
        assert result.exit_code == EXIT_CODE_OK
        assert "2025-01-01" in result.output
        assert "$3.00" in result.output
        assert "2025-01-02" in result.output

    def test_models(self, config_path):
        result = runner.invoke(app, ["--config", config_path, "models"])
        assert result.exit_code == EXIT_CODE_OK
        assert "claude-opus-4-5" in result.output
        assert "$0.50" in result.output

    def test_projects(self, config_path):
        result = runner.invoke(app, ["--config", config_path, "projects", "--order", "asc"])
        assert result.exit_code == EXIT_CODE_OK
        assert result.output.index("lib") < result.output.index("app")

    def test_projects_bad_order(self, config_path):
        result = runner.invoke(app, ["--config", config_path, "projects", "--order", "sideways"])
        assert result.exit_code != EXIT_CODE_OK

    def test_entries(self, config_path):
        result = runner.invoke(app, ["--config", config_path, "entries", "--limit", "1"])
        assert result.exit_code == EXIT_CODE_OK
        assert "2025-01-02 12:00:00" in result.output
        assert "2025-01-01" not in result.output

    def test_day(self, config_path):
        result = runner.invoke(app, ["--config", config_path, "day", "2025-01-01"])
        assert result.exit_code == EXIT_CODE_OK
        assert "Total cost: $3.00" in result.output

    def test_day_without_usage(self, config_path):
        result = runner.invoke(app, ["--config", config_path, "day", "2024-02-29"])
        assert result.exit_code == EXIT_CODE_OK
        assert "No usage on 2024-02-29" in result.output

    def test_session_without_activity(self, config_path):
        result = runner.invoke(app, ["--config", config_path, "session"])
        assert result.exit_code == EXIT_CODE_OK
        assert "No active session" in result.output

    def test_session_active(self, tmp_path, write_session, make_record, projects_dir):
        """Test the active block display with entries from a few minutes ago."""
        now = datetime.now(timezone.utc)
        write_session("proj", "live", [make_record(now - timedelta(minutes=5), cost=1.25)])
        result = runner.invoke(app, ["--projects-dir", str(projects_dir), "session"])
        assert result.exit_code == EXIT_CODE_OK
        assert "Active Session" in result.output
        assert "Cost: $1.25" in result.output

    def test_session_window_in_configured_zone(self, tmp_path, write_session, make_record, projects_dir):
        now = datetime.now(timezone.utc)
        write_session("proj", "live", [make_record(now - timedelta(minutes=5), cost=1.25)])
        path = tmp_path / "utc.yaml"
        path.write_text(yaml.dump({"projects_dir": str(projects_dir), "timezone": "UTC"}))
        result = runner.invoke(app, ["--config", str(path), "session"])
        assert result.exit_code == EXIT_CODE_OK
        start = (now - timedelta(minutes=5)).replace(minute=0, second=0, microsecond=0)
        assert f"Window: {start:%Y-%m-%d %H:%M} - " in result.output
        assert "UTC" in result.output

    def test_projects_dir_option(self, tmp_path):
        result = runner.invoke(app, ["--projects-dir", str(tmp_path / "absent"), "daily"])
        assert result.exit_code == EXIT_CODE_OK
        assert "No usage data found" in result.output

    def test_missing_config_exits_with_error(self, tmp_path):
        result = runner.invoke(app, ["--config", str(tmp_path / "nope.yaml"), "stats"])
        assert result.exit_code == EXIT_CODE_CONFIG_ERROR
        assert "Configuration error" in result.output

    def test_invalid_config_exits_with_error(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("session:\n  duration_hours: -1\n")
        result = runner.invoke(app, ["--config", str(path), "stats"])
        assert result.exit_code == EXIT_CODE_CONFIG_ERROR

    def test_verbose(self, config_path):
        result = runner.invoke(app, ["--config", config_path, "--verbose", "stats"])
        assert result.exit_code == EXIT_CODE_OK
        assert "Total cost: $3.50" in result.output


class TestFormatting:
    """Test output helpers."""

    def test_window_converted_to_zone(self):
        """Verify the session window is shown in the configured zone with its name."""
        start = datetime(2025, 1, 1, 10, 0, tzinfo=timezone.utc)
        end = datetime(2025, 1, 1, 15, 0, tzinfo=timezone.utc)
        plus_two = timezone(timedelta(hours=2))
        assert _format_window(start, end, plus_two) == "2025-01-01 12:00 - 17:00 UTC+02:00"
        assert _format_window(start, end, timezone.utc) == "2025-01-01 10:00 - 15:00 UTC"
