"""
Repository for usage data access.

The single owner of the entry cache and the deduplication set. Every public
query runs under one lock, so no query observes a half-updated cache.
"""

import logging
import os
import threading
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Callable, List, Optional, Tuple, Union

from claude_usage_core.config.loader import MonitorConfig, default_config
from claude_usage_core.core.aggregation import (
    ProjectUsage,
    SortOrder,
    UsageStats,
    aggregate,
    entries_for_date,
    entries_in_range,
    filter_by_date_range,
    filter_projects,
    sort_projects,
)
from claude_usage_core.core.sessions import (
    BurnRate,
    SessionBlock,
    SessionWindower,
    active_block,
    auto_token_limit,
)
from .cache import EntryCache, LoadReport
from .dedup import Deduplicator
from .discovery import FileCatalog, count_sessions, filter_modified_since
from .models import FileMetadata, UsageEntry

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class CacheInfo:
    """Snapshot of the repository's in-memory state."""
    cached_files: int
    cached_entries: int
    dedup_keys: int
    last_load: LoadReport


class UsageRepository:
    """Query surface over the usage logs of a projects directory.

    Files are parsed at most once per modification time; later queries are
    served from the entry cache.
    """

    def __init__(self, config: Optional[MonitorConfig] = None, clock: Optional[Clock] = None):
        """Initialize the repository.

        Args:
            config: Monitor configuration (defaults for every setting if None)
            clock: Returns the current aware datetime; injectable for tests
        """
        self.config = config or default_config()
        self._clock = clock or _utc_now
        self._lock = threading.RLock()
        self._deduplication = Deduplicator()
        self._catalog = FileCatalog(self.config.projects_dir, self.config.discovery.skip_prefixes)

        cache_config = self.config.cache
        self._cache = EntryCache(
            sequential_threshold=cache_config.sequential_threshold,
            batch_threshold=cache_config.batch_threshold,
            batch_size=cache_config.batch_size,
            max_workers=cache_config.max_workers,
            assume_immutable_before_today=cache_config.assume_immutable_before_today,
            pricing=self.config.pricing,
        )

        session_config = self.config.session
        self._windower = SessionWindower(
            duration_hours=session_config.duration_hours,
            inactivity_gap_minutes=session_config.inactivity_gap_minutes,
            activity_threshold_minutes=session_config.activity_threshold_minutes,
        )
        self._tz = self.config.tzinfo

    @property
    def projects_dir(self) -> str:
        return self.config.projects_dir

    def _now(self) -> datetime:
        return self._clock()

    def _today(self) -> date:
        return self._now().astimezone(self._tz).date()

    def _today_start(self) -> datetime:
        return self._now().astimezone(self._tz).replace(hour=0, minute=0, second=0, microsecond=0)

    def _discover(self) -> List[FileMetadata]:
        return self._catalog.discover(self._cache.trusted_mtime_lookup(self._today_start()))

    def _load(self) -> List[UsageEntry]:
        return self._load_with_files()[0]

    def _load_with_files(self) -> Tuple[List[UsageEntry], List[FileMetadata]]:
        files = self._discover()
        self._cache.prune(files, self._deduplication)
        return self._cache.load(files, self._deduplication), files

    def get_usage_stats(self) -> UsageStats:
        """Aggregate statistics over every usage file."""
        with self._lock:
            entries, files = self._load_with_files()
            return aggregate(entries, count_sessions(files), self._tz)

    def get_usage_entries(self, limit: Optional[int] = None) -> List[UsageEntry]:
        """Usage entries, most recent first.

        Args:
            limit: Maximum number of entries to return (all if None)

        Raises:
            ValueError: If limit is negative
        """
        if limit is not None and limit < 0:
            raise ValueError("limit must be >= 0")
        with self._lock:
            entries = sorted(self._load(), key=lambda e: e.timestamp, reverse=True)
        return entries if limit is None else entries[:limit]

    def get_entries_for_date(self, day: date) -> List[UsageEntry]:
        """Entries of one calendar day in the configured time zone, oldest first."""
        with self._lock:
            return entries_for_date(self._load(), day, self._tz)

    def get_today_entries(self) -> List[UsageEntry]:
        """Entries of the current day, oldest first.

        Only files modified today are considered. Dirty files are parsed
        with a private key set and the results are not cached, so an
        earlier full scan cannot hide today's records.
        """
        with self._lock:
            today_start = self._today_start()
            # A full stat: files cached before today may have grown since.
            files = filter_modified_since(self._catalog.discover(), today_start)
            entries = self._cache.load(files, Deduplicator(), store=False)
            return entries_for_date(entries, today_start.date(), self._tz)

    def get_today_usage_stats(self) -> UsageStats:
        """Statistics for the current day.

        The session count is the number of distinct session ids seen today.
        """
        entries = self.get_today_entries()
        sessions = {e.session_id or e.source_file for e in entries}
        return aggregate(entries, len(sessions), self._tz)

    def get_usage_by_date_range(self, start: date, end: date) -> UsageStats:
        """Statistics for the inclusive date range ``[start, end]``.

        Raises:
            ValueError: If start is after end
        """
        if start > end:
            raise ValueError("start date must not be after end date")
        with self._lock:
            in_range = entries_in_range(self._load(), start, end, self._tz)
        sessions = {os.path.basename(e.source_file) for e in in_range}
        return filter_by_date_range(aggregate(in_range, len(sessions), self._tz), start, end)

    def get_project_stats(
        self,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        order: Optional[Union[SortOrder, str]] = None,
    ) -> List[ProjectUsage]:
        """Per-project usage, optionally filtered by last use and sorted by cost.

        Args:
            since: Keep projects last used at or after this time (naive times are UTC)
            until: Keep projects last used at or before this time (naive times are UTC)
            order: ``"asc"`` or ``"desc"`` by total cost (unsorted if None)

        Raises:
            ValueError: If order is not a valid sort order
        """
        if isinstance(order, str):
            order = SortOrder(order.lower())
        stats = self.get_usage_stats()
        return sort_projects(filter_projects(stats.by_project, since, until), order)

    def get_session_blocks(self, include_gaps: bool = False) -> List[SessionBlock]:
        """Session blocks over every entry, in chronological order."""
        with self._lock:
            entries = self._load()
            return self._windower.identify_blocks(entries, now=self._now(), include_gaps=include_gaps)

    def get_active_session_block(self) -> Optional[SessionBlock]:
        return active_block(self.get_session_blocks())

    def get_burn_rate(self) -> Optional[BurnRate]:
        """Burn rate of the active block, or None if no block is active."""
        block = self.get_active_session_block()
        return block.burn_rate if block is not None else None

    def get_auto_token_limit(self) -> Optional[int]:
        """Largest token total of any closed block, or None if none has closed."""
        return auto_token_limit(self.get_session_blocks())

    def get_token_limit(self) -> Optional[int]:
        """Configured token limit, falling back to the auto limit."""
        if self.config.session.token_limit is not None:
            return self.config.session.token_limit
        return self.get_auto_token_limit()

    def cache_info(self) -> CacheInfo:
        with self._lock:
            return CacheInfo(
                cached_files=len(self._cache),
                cached_entries=self._cache.entry_count,
                dedup_keys=len(self._deduplication),
                last_load=self._cache.last_report,
            )

    def clear_cache(self) -> None:
        """Reset the entry cache and the deduplication set."""
        with self._lock:
            self._cache.clear()
            self._deduplication.clear()
        logger.debug("Cleared entry cache for %s", self.projects_dir)


# Global repository instance for convenience
_default_repository: Optional[UsageRepository] = None
_default_lock = threading.Lock()


def get_repository(config: Optional[MonitorConfig] = None) -> UsageRepository:
    """Get the default repository instance.

    The configuration is only used when the instance is first created.

    Args:
        config: Monitor configuration

    Returns:
        UsageRepository instance
    """
    global _default_repository
    with _default_lock:
        if _default_repository is None:
            _default_repository = UsageRepository(config)
        return _default_repository
