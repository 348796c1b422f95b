"""
CLI interface for Claude usage statistics.

A thin front end over the repository's query surface.
"""

import logging
import sys
from datetime import date, datetime, tzinfo
from typing import Optional

import typer
import yaml
from rich.console import Console
from rich.table import Table

from claude_usage_core.config.loader import default_config, load_config
from claude_usage_core.core.aggregation import UsageStats
from claude_usage_core.logging_config import setup_logging
from claude_usage_core.storage.repository import UsageRepository

logger = logging.getLogger(__name__)

app = typer.Typer(help="Token usage and cost statistics from Claude session logs.")
console = Console()

EXIT_CODE_OK = 0
EXIT_CODE_CONFIG_ERROR = 1


def _format_currency(amount: float) -> str:
    """Format currency with proper symbols and formatting."""
    return f"${amount:,.2f}"


def _format_tokens(count: int) -> str:
    return f"{count:,}"


def _format_window(start: datetime, end: datetime, tz: Optional[tzinfo]) -> str:
    """Format a session window in ``tz`` (local time zone if None)."""
    start, end = start.astimezone(tz), end.astimezone(tz)
    return f"{start:%Y-%m-%d %H:%M} - {end:%H:%M} {start:%Z}".rstrip()


def _parse_date(value: Optional[str], option: str) -> Optional[date]:
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise typer.BadParameter(f"expected YYYY-MM-DD, got '{value}'", param_hint=option)


def _repository(ctx: typer.Context) -> UsageRepository:
    return ctx.obj


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to YAML configuration file"),
    projects_dir: Optional[str] = typer.Option(None, "--projects-dir", "-p", help="Directory holding the project logs"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Claude usage statistics CLI."""
    setup_logging(logging.DEBUG if verbose else None)

    try:
        monitor_config = load_config(config) if config else default_config()
        if projects_dir:
            monitor_config = monitor_config.with_projects_dir(projects_dir)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Configuration error:[/] {e}")
        sys.exit(EXIT_CODE_CONFIG_ERROR)

    repository = UsageRepository(monitor_config)
    ctx.obj = repository
    if verbose:
        ctx.call_on_close(lambda: _log_cache_info(repository))

    if ctx.invoked_subcommand is None:
        console.print("Claude usage statistics - Use --help to see available commands")


def _log_cache_info(repository: UsageRepository) -> None:
    info = repository.cache_info()
    logger.debug(
        "Cache: %d files, %d entries, %d dedup keys (last load: %d hits, %d dirty, %s)",
        info.cached_files, info.cached_entries, info.dedup_keys,
        info.last_load.cache_hits, info.last_load.dirty_files, info.last_load.strategy.value,
    )


def _display_totals(stats: UsageStats, title: str) -> None:
    console.print(f"\n[bold]{title}[/bold]")
    console.print("-" * 40)
    console.print(f"Total cost: {_format_currency(stats.total_cost)}")
    console.print(f"Total tokens: {_format_tokens(stats.total_tokens)}")
    console.print(f"  Input: {_format_tokens(stats.total_input)}")
    console.print(f"  Output: {_format_tokens(stats.total_output)}")
    console.print(f"  Cache write: {_format_tokens(stats.total_cache_write)}")
    console.print(f"  Cache read: {_format_tokens(stats.total_cache_read)}")
    console.print(f"Sessions: {stats.session_count}")


@app.command()
def stats(
    ctx: typer.Context,
    since: Optional[str] = typer.Option(None, "--since", help="First day to include (YYYY-MM-DD)"),
    until: Optional[str] = typer.Option(None, "--until", help="Last day to include (YYYY-MM-DD)"),
):
    """Show overall usage totals."""
    repository = _repository(ctx)
    start = _parse_date(since, "--since")
    end = _parse_date(until, "--until")

    if start is None and end is None:
        _display_totals(repository.get_usage_stats(), "Usage Statistics")
        return

    try:
        result = repository.get_usage_by_date_range(start or date.min, end or date.max)
    except ValueError as e:
        raise typer.BadParameter(str(e), param_hint="--since")
    _display_totals(result, f"Usage Statistics {start or '...'} to {end or '...'}")


@app.command()
def daily(ctx: typer.Context):
    """Show usage per day."""
    result = _repository(ctx).get_usage_stats()
    if not result.by_date:
        console.print("\n[dim]No usage data found.[/]")
        return

    table = Table(title="Daily Usage")
    table.add_column("Date")
    table.add_column("Cost", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("Models")
    for day in result.by_date:
        table.add_row(
            day.date,
            _format_currency(day.total_cost),
            _format_tokens(day.total_tokens),
            ", ".join(day.models_used),
        )
    console.print(table)


@app.command()
def models(ctx: typer.Context):
    """Show usage per model, most expensive first."""
    result = _repository(ctx).get_usage_stats()
    if not result.by_model:
        console.print("\n[dim]No usage data found.[/]")
        return

    table = Table(title="Usage by Model")
    table.add_column("Model")
    table.add_column("Cost", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("Entries", justify="right")
    for usage in sorted(result.by_model, key=lambda m: m.total_cost, reverse=True):
        table.add_row(
            usage.model,
            _format_currency(usage.total_cost),
            _format_tokens(usage.total_tokens),
            str(usage.entry_count),
        )
    console.print(table)


@app.command()
def projects(
    ctx: typer.Context,
    order: str = typer.Option("desc", "--order", "-o", help="Sort by cost: asc or desc"),
):
    """Show usage per project."""
    try:
        result = _repository(ctx).get_project_stats(order=order)
    except ValueError:
        raise typer.BadParameter("must be 'asc' or 'desc'", param_hint="--order")
    if not result:
        console.print("\n[dim]No usage data found.[/]")
        return

    table = Table(title="Usage by Project")
    table.add_column("Project")
    table.add_column("Cost", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("Sessions", justify="right")
    table.add_column("Last used")
    for project in result:
        table.add_row(
            project.project_name,
            _format_currency(project.total_cost),
            _format_tokens(project.total_tokens),
            str(project.session_count),
            project.last_used.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)


def _entries_table(title: str, entries) -> Table:
    table = Table(title=title)
    table.add_column("Time")
    table.add_column("Model")
    table.add_column("Tokens", justify="right")
    table.add_column("Cost", justify="right")
    for entry in entries:
        table.add_row(
            entry.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            entry.model,
            _format_tokens(entry.total_tokens),
            _format_currency(entry.cost),
        )
    return table


@app.command()
def entries(
    ctx: typer.Context,
    limit: int = typer.Option(20, "--limit", "-n", min=0, help="Number of entries to show"),
):
    """Show the most recent usage entries."""
    result = _repository(ctx).get_usage_entries(limit=limit)
    if not result:
        console.print("\n[dim]No usage data found.[/]")
        return
    console.print(_entries_table("Recent Entries", result))


@app.command()
def day(ctx: typer.Context, value: str = typer.Argument(..., metavar="DATE", help="Day to show (YYYY-MM-DD)")):
    """Show every entry of one day."""
    target = _parse_date(value, "DATE")
    result = _repository(ctx).get_entries_for_date(target)
    if not result:
        console.print(f"\n[dim]No usage on {target}.[/]")
        return
    console.print(_entries_table(f"Entries on {target}", result))
    console.print(f"Total cost: {_format_currency(sum(e.cost for e in result))}")


@app.command()
def session(ctx: typer.Context):
    """Show the active session block with burn rate and projection."""
    repository = _repository(ctx)
    block = repository.get_active_session_block()
    if block is None:
        console.print("\n[dim]No active session.[/]")
        return

    limit = repository.get_token_limit()
    console.print("\n[bold]Active Session[/bold]")
    console.print("-" * 40)
    console.print(f"Window: {_format_window(block.start_time, block.end_time, repository.config.tzinfo)}")
    console.print(f"Tokens: {_format_tokens(block.total_tokens)}"
                  + (f" of {_format_tokens(limit)}" if limit else ""))
    console.print(f"Cost: {_format_currency(block.cost)}")
    console.print(f"Models: {', '.join(sorted(block.models))}")
    console.print(f"Burn rate: {block.burn_rate.tokens_per_minute:,.1f} tokens/min, "
                  f"{_format_currency(block.burn_rate.cost_per_hour)}/hour")
    projected = block.projected_usage
    console.print(f"Projected: {_format_tokens(projected.total_tokens)} tokens, "
                  f"{_format_currency(projected.total_cost)} "
                  f"({projected.remaining_minutes:.0f} min remaining)")


if __name__ == "__main__":
    app()
