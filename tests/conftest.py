"""
Shared fixtures for building usage log trees.
"""

import json
import os
from datetime import datetime, timezone

import pytest


def _build_record(
    timestamp,
    model="claude-sonnet-4-5",
    input_tokens=100,
    output_tokens=50,
    cache_write=0,
    cache_read=0,
    message_id=None,
    request_id=None,
    cost=None,
    session_id=None,
    record_type="assistant",
):
    if isinstance(timestamp, datetime):
        timestamp = timestamp.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
    record = {
        "timestamp": timestamp,
        "type": record_type,
        "message": {
            "model": model,
            "usage": {
                "input_tokens": input_tokens,
                "output_tokens": output_tokens,
                "cache_creation_input_tokens": cache_write,
                "cache_read_input_tokens": cache_read,
            },
        },
    }
    if message_id is not None:
        record["message"]["id"] = message_id
    if request_id is not None:
        record["requestId"] = request_id
    if cost is not None:
        record["costUSD"] = cost
    if session_id is not None:
        record["sessionId"] = session_id
    return record


@pytest.fixture
def make_record():
    """Build one assistant log record as a dict."""
    return _build_record


@pytest.fixture
def projects_dir(tmp_path):
    """An empty projects directory."""
    path = tmp_path / "projects"
    path.mkdir()
    return path


@pytest.fixture
def write_session(projects_dir):
    """Write records (dicts or raw strings) to ``<project>/<name>.jsonl``."""

    def write(project, name, records, mtime=None):
        project_path = projects_dir / project
        project_path.mkdir(exist_ok=True)
        path = project_path / f"{name}.jsonl"
        lines = [r if isinstance(r, str) else json.dumps(r) for r in records]
        path.write_text("".join(line + "\n" for line in lines), encoding="utf-8")
        if mtime is not None:
            os.utime(path, (mtime, mtime))
        return str(path)

    return write
