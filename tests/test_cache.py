"""
Unit tests for the file-level entry cache.

Tests cache hits, reparse on change, strategy selection and key release.
"""

import json
import os
from datetime import datetime, timezone

import pytest

from claude_usage_core.storage import cache as cache_module
from claude_usage_core.storage.cache import EntryCache, LoadStrategy, batches, choose_strategy
from claude_usage_core.storage.dedup import Deduplicator
from claude_usage_core.storage.discovery import FileCatalog
from claude_usage_core.storage.models import FileMetadata


@pytest.fixture
def parse_calls(monkeypatch):
    """Record every path handed to the file parser."""
    calls = []
    original = cache_module.parse_file

    def counting_parse_file(path, *args, **kwargs):
        calls.append(path)
        return original(path, *args, **kwargs)

    monkeypatch.setattr(cache_module, "parse_file", counting_parse_file)
    return calls


def _discover(projects_dir):
    return FileCatalog(str(projects_dir)).discover()


class TestStrategySelection:
    """Test choice of processing strategy."""

    def test_thresholds(self):
        assert choose_strategy(0, 5, 500) is LoadStrategy.NONE
        assert choose_strategy(5, 5, 500) is LoadStrategy.SEQUENTIAL
        assert choose_strategy(6, 5, 500) is LoadStrategy.PARALLEL
        assert choose_strategy(500, 5, 500) is LoadStrategy.PARALLEL
        assert choose_strategy(501, 5, 500) is LoadStrategy.BATCHED

    def test_batches(self):
        files = list(range(7))
        assert [len(b) for b in batches(files, 3)] == [3, 3, 1]


class TestCacheHits:
    """Test reuse of parsed entries."""

    def test_unchanged_file_not_reparsed(self, projects_dir, write_session, make_record, parse_calls):
        """Verify a second load over unchanged files skips the parser."""
        write_session("-Users-me-app", "s1", [make_record("2025-01-01T10:00:00Z", cost=1.0)], mtime=1_700_000_000)
        entry_cache = EntryCache()
        dedup = Deduplicator()

        first = entry_cache.load(_discover(projects_dir), dedup)
        second = entry_cache.load(_discover(projects_dir), dedup)

        assert len(parse_calls) == 1
        assert first == second
        assert first[0].project == "/Users/me/app"
        assert entry_cache.last_report.cache_hits == 1
        assert entry_cache.last_report.dirty_files == 0
        assert entry_cache.last_report.strategy is LoadStrategy.NONE

    def test_changed_file_reparsed(self, projects_dir, write_session, make_record, parse_calls):
        """Verify a new modification time invalidates the cached entries."""
        record = make_record("2025-01-01T10:00:00Z", cost=1.0)
        write_session("proj", "s1", [record], mtime=1_700_000_000)
        entry_cache = EntryCache()
        dedup = Deduplicator()
        entry_cache.load(_discover(projects_dir), dedup)

        write_session("proj", "s1", [record, make_record("2025-01-01T11:00:00Z", cost=2.0)], mtime=1_700_000_100)
        entries = entry_cache.load(_discover(projects_dir), dedup)

        assert len(parse_calls) == 2
        assert sorted(e.cost for e in entries) == [1.0, 2.0]

    def test_appended_file_keeps_its_own_records(self, projects_dir, write_session, make_record):
        """Verify a reparsed file is not deduplicated against its old entries."""
        first = make_record("2025-01-01T10:00:00Z", cost=1.0, message_id="m1", request_id="r1")
        second = make_record("2025-01-01T11:00:00Z", cost=2.0, message_id="m2", request_id="r2")
        write_session("proj", "s1", [first], mtime=1_700_000_000)
        entry_cache = EntryCache()
        dedup = Deduplicator()
        entry_cache.load(_discover(projects_dir), dedup)

        write_session("proj", "s1", [first, second], mtime=1_700_000_100)
        entries = entry_cache.load(_discover(projects_dir), dedup)

        assert sorted(e.cost for e in entries) == [1.0, 2.0]
        assert len(dedup) == 2

    def test_unreadable_file_not_cached(self, tmp_path):
        """Verify a file that cannot be read is retried on the next load."""
        missing = FileMetadata(
            path=str(tmp_path / "gone.jsonl"),
            project_dir="proj",
            earliest_timestamp=datetime(2025, 1, 1, tzinfo=timezone.utc),
            modification_time=1.0,
        )
        entry_cache = EntryCache()
        assert entry_cache.load([missing], Deduplicator()) == []
        assert missing.path not in entry_cache

    def test_store_false_leaves_cache_untouched(self, projects_dir, write_session, make_record):
        write_session("proj", "s1", [make_record("2025-01-01T10:00:00Z")])
        entry_cache = EntryCache()
        entries = entry_cache.load(_discover(projects_dir), Deduplicator(), store=False)
        assert len(entries) == 1
        assert len(entry_cache) == 0

    def test_prune_releases_keys(self, projects_dir, write_session, make_record):
        """Verify records of a deleted file can be counted again elsewhere."""
        record = make_record("2025-01-01T10:00:00Z", message_id="m1", request_id="r1")
        path = write_session("proj", "s1", [record])
        entry_cache = EntryCache()
        dedup = Deduplicator()
        entry_cache.load(_discover(projects_dir), dedup)

        os.remove(path)
        write_session("proj", "s2", [record])
        files = _discover(projects_dir)
        assert entry_cache.prune(files, dedup) == 1
        assert len(entry_cache.load(files, dedup)) == 1

    def test_prune_restores_duplicate_in_cached_file(self, projects_dir, write_session, make_record):
        """Verify deleting the file that won a shared record counts the cached copy."""
        record = make_record("2025-01-01T10:00:00Z", cost=2.0, message_id="m1", request_id="r1")
        write_session("proj", "s1", [record], mtime=1_700_000_000)
        write_session("proj", "s2", [record], mtime=1_700_000_000)
        entry_cache = EntryCache()
        dedup = Deduplicator()
        first = entry_cache.load(_discover(projects_dir), dedup)
        assert len(first) == 1

        os.remove(first[0].source_file)
        files = _discover(projects_dir)
        entry_cache.prune(files, dedup)
        entries = entry_cache.load(files, dedup)

        assert [e.cost for e in entries] == [2.0]
        assert entries[0].source_file != first[0].source_file
        assert entry_cache.last_report.dirty_files == 1
        assert "m1:r1" in dedup

    def test_rewritten_file_restores_duplicate_in_cached_file(self, projects_dir, write_session, make_record):
        """Verify a record dropped from the winning file is counted from its other copy."""
        shared = make_record("2025-01-01T10:00:00Z", cost=2.0, message_id="m1", request_id="r1")
        other = make_record("2025-01-01T11:00:00Z", cost=3.0, message_id="m2", request_id="r2")
        write_session("proj", "s1", [shared], mtime=1_700_000_000)
        write_session("proj", "s2", [shared], mtime=1_700_000_000)
        entry_cache = EntryCache()
        dedup = Deduplicator()
        first = entry_cache.load(_discover(projects_dir), dedup)
        winner = first[0].source_file

        with open(winner, "w", encoding="utf-8") as f:
            f.write(json.dumps(other) + "\n")
        os.utime(winner, (1_700_000_100, 1_700_000_100))
        entries = entry_cache.load(_discover(projects_dir), dedup)

        assert sorted(e.cost for e in entries) == [2.0, 3.0]
        assert entry_cache.last_report.dirty_files == 2

    def test_untouched_duplicates_stay_cached(self, projects_dir, write_session, make_record, parse_calls):
        """Verify a cached file with suppressed records is not reparsed without cause."""
        record = make_record("2025-01-01T10:00:00Z", cost=2.0, message_id="m1", request_id="r1")
        write_session("proj", "s1", [record], mtime=1_700_000_000)
        write_session("proj", "s2", [record], mtime=1_700_000_000)
        entry_cache = EntryCache()
        dedup = Deduplicator()
        entry_cache.load(_discover(projects_dir), dedup)

        write_session("proj", "s3", [make_record("2025-01-02T10:00:00Z", cost=1.0)], mtime=1_700_000_000)
        entries = entry_cache.load(_discover(projects_dir), dedup)

        assert sorted(e.cost for e in entries) == [1.0, 2.0]
        assert len(parse_calls) == 3


class TestParallelStrategies:
    """Test parallel and batched parsing."""

    def _write_files(self, write_session, make_record, count):
        for i in range(count):
            write_session("proj", f"s{i}", [
                make_record("2025-01-01T10:00:00Z", cost=1.0, message_id=f"m{i}", request_id=f"r{i}"),
                make_record("2025-01-01T10:05:00Z", cost=1.0, message_id="shared", request_id="shared"),
            ])

    def test_parallel(self, projects_dir, write_session, make_record):
        """Verify the thread pool path returns every unique entry once."""
        self._write_files(write_session, make_record, 4)
        entry_cache = EntryCache(sequential_threshold=1, batch_threshold=10, max_workers=4)
        entries = entry_cache.load(_discover(projects_dir), Deduplicator())
        assert entry_cache.last_report.strategy is LoadStrategy.PARALLEL
        assert len(entries) == 5
        assert len(entry_cache) == 4

    def test_batched(self, projects_dir, write_session, make_record):
        self._write_files(write_session, make_record, 5)
        entry_cache = EntryCache(sequential_threshold=1, batch_threshold=2, batch_size=2, max_workers=2)
        entries = entry_cache.load(_discover(projects_dir), Deduplicator())
        assert entry_cache.last_report.strategy is LoadStrategy.BATCHED
        assert len(entries) == 6


class TestImmutablePolicy:
    """Test the trusted modification time lookup."""

    def test_disabled_policy_has_no_lookup(self):
        entry_cache = EntryCache(assume_immutable_before_today=False)
        assert entry_cache.trusted_mtime_lookup(datetime.now(timezone.utc)) is None

    def test_only_files_cached_before_cutoff_are_trusted(self, projects_dir, write_session, make_record):
        old = write_session("proj", "old", [make_record("2025-01-01T10:00:00Z")], mtime=1_000)
        new = write_session("proj", "new", [make_record("2025-01-01T10:00:00Z")], mtime=5_000)
        entry_cache = EntryCache()
        entry_cache.load(_discover(projects_dir), Deduplicator())

        lookup = entry_cache.trusted_mtime_lookup(datetime.fromtimestamp(3_000, tz=timezone.utc))
        assert lookup(old) == 1_000
        assert lookup(new) is None
        assert lookup("/not/cached.jsonl") is None
