"""
File-level entry cache.

Keeps the parsed entries of every file keyed by its modification time and
decides how much reparse work a query needs.

Processing strategy by number of dirty files:
1. Sequential - up to ``sequential_threshold`` files
2. Parallel - a thread pool, up to ``batch_threshold`` files
3. Batched - fixed-size batches, each parsed in parallel, one after another
"""

import logging
import os
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, Iterator, List, Optional, Sequence, Set, Tuple

from claude_usage_core.core.pricing import PRICING_TABLE, PricingTable
from .dedup import Deduplicator
from .discovery import decode_project_path
from .models import CacheEntry, FileMetadata, UsageEntry
from .parser import parse_file

logger = logging.getLogger(__name__)

ParseResult = Tuple[FileMetadata, Optional[List[UsageEntry]], FrozenSet[str]]


class LoadStrategy(Enum):
    """How dirty files are parsed."""
    NONE = "none"
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    BATCHED = "batched"


@dataclass(frozen=True)
class LoadReport:
    """Bookkeeping of the most recent load."""
    cache_hits: int
    dirty_files: int
    strategy: LoadStrategy
    entries: int


def choose_strategy(dirty_count: int, sequential_threshold: int, batch_threshold: int) -> LoadStrategy:
    """Pick the processing strategy for a number of dirty files."""
    if dirty_count <= 0:
        return LoadStrategy.NONE
    if dirty_count <= sequential_threshold:
        return LoadStrategy.SEQUENTIAL
    if dirty_count <= batch_threshold:
        return LoadStrategy.PARALLEL
    return LoadStrategy.BATCHED


def batches(files: Sequence[FileMetadata], size: int) -> Iterator[List[FileMetadata]]:
    """Split files into consecutive chunks of at most ``size``."""
    for start in range(0, len(files), size):
        yield list(files[start:start + size])


def default_max_workers() -> int:
    return os.cpu_count() or 4


class EntryCache:
    """Per-file cache of parsed entries.

    Not thread-safe on its own: the owning repository serializes every
    call. Worker threads only parse; cache writes happen on the caller's
    thread after the workers return.
    """

    def __init__(
        self,
        sequential_threshold: int = 5,
        batch_threshold: int = 500,
        batch_size: int = 100,
        max_workers: Optional[int] = None,
        assume_immutable_before_today: bool = True,
        pricing: PricingTable = PRICING_TABLE,
    ):
        """Initialize the cache.

        Args:
            sequential_threshold: Largest dirty-file count parsed sequentially
            batch_threshold: Largest dirty-file count parsed in one parallel fan-out
            batch_size: Files per batch above ``batch_threshold``
            max_workers: Thread pool size (defaults to the CPU count)
            assume_immutable_before_today: Trust cached mtimes older than the
                start of today without re-stat'ing the file. Files edited after
                the day they were written are then missed until ``clear``.
            pricing: Pricing for records without an explicit cost
        """
        self.sequential_threshold = sequential_threshold
        self.batch_threshold = batch_threshold
        self.batch_size = batch_size
        self.max_workers = max_workers or default_max_workers()
        self.assume_immutable_before_today = assume_immutable_before_today
        self.pricing = pricing
        self._files: Dict[str, CacheEntry] = {}
        self._pending_release: Set[str] = set()
        self.last_report = LoadReport(0, 0, LoadStrategy.NONE, 0)

    def __len__(self) -> int:
        return len(self._files)

    def __contains__(self, path: object) -> bool:
        return path in self._files

    def get(self, path: str) -> Optional[CacheEntry]:
        return self._files.get(path)

    @property
    def entry_count(self) -> int:
        return sum(len(cached.entries) for cached in self._files.values())

    def clear(self) -> None:
        self._files.clear()
        self._pending_release.clear()

    def trusted_mtime_lookup(self, today_start: datetime):
        """Build the discovery lookup for the immutable-before-today policy.

        Returns None when the policy is disabled, so every file is stat'ed.
        """
        if not self.assume_immutable_before_today:
            return None
        cutoff = today_start.timestamp()

        def lookup(path: str) -> Optional[float]:
            cached = self._files.get(path)
            if cached is not None and cached.modification_time < cutoff:
                return cached.modification_time
            return None

        return lookup

    def is_cache_hit(self, file: FileMetadata) -> bool:
        cached = self._files.get(file.path)
        return cached is not None and cached.is_valid_for(file.modification_time)

    def partition(self, files: Sequence[FileMetadata]) -> Tuple[List[FileMetadata], List[FileMetadata]]:
        """Split files into (cache hits, dirty files)."""
        hits, dirty = [], []
        for file in files:
            (hits if self.is_cache_hit(file) else dirty).append(file)
        return hits, dirty

    def load(
        self,
        files: Sequence[FileMetadata],
        deduplication: Deduplicator,
        store: bool = True,
    ) -> List[UsageEntry]:
        """Return the union of entries for ``files``, reparsing only dirty ones.

        Args:
            files: Discovered files
            deduplication: Key set shared by the parsers of this load
            store: Write parse results back into the cache. A load with a
                private Deduplicator passes False so its view never leaks
                into the shared cache.

        Returns:
            Entries in no particular order
        """
        hits, dirty = self.partition(files)
        if store:
            hits, dirty = self._reopen_for_released_keys(hits, dirty, deduplication)
        entries: List[UsageEntry] = []
        for file in hits:
            cached = self._files[file.path].entries
            if not store:
                # Seed the private key set with the records served from the cache.
                for entry in cached:
                    deduplication.should_include(entry.message_id, entry.request_id)
            entries.extend(cached)

        strategy = choose_strategy(len(dirty), self.sequential_threshold, self.batch_threshold)
        for file, parsed, suppressed in self._parse(dirty, deduplication, strategy):
            if parsed is None:
                if store:
                    self._files.pop(file.path, None)
                continue
            if store:
                self._files[file.path] = CacheEntry(file.modification_time, tuple(parsed), suppressed)
            entries.extend(parsed)

        self.last_report = LoadReport(len(hits), len(dirty), strategy, len(entries))
        logger.debug(
            "Loaded %d entries: %d cache hits, %d dirty files (%s)",
            len(entries), len(hits), len(dirty), strategy.value,
        )
        return entries

    def prune(self, files: Sequence[FileMetadata], deduplication: Deduplicator) -> int:
        """Drop cached files that are no longer discovered.

        Their dedup keys are released so a copy of the records elsewhere is
        counted again.

        Returns:
            Number of files dropped
        """
        present = {file.path for file in files}
        gone = [path for path in self._files if path not in present]
        for path in gone:
            self._pending_release |= self._release_keys(self._files.pop(path), deduplication)
        if gone:
            logger.debug("Pruned %d vanished files from the cache", len(gone))
        return len(gone)

    def _release_keys(self, cached: CacheEntry, deduplication: Deduplicator) -> Set[str]:
        keys = {entry.dedup_key for entry in cached.entries if entry.dedup_key is not None}
        deduplication.release(keys)
        return keys

    def _reopen_for_released_keys(
        self,
        hits: List[FileMetadata],
        dirty: List[FileMetadata],
        deduplication: Deduplicator,
    ) -> Tuple[List[FileMetadata], List[FileMetadata]]:
        """Release the keys of files about to be reparsed.

        A cached file that lost one of the released keys during its own parse
        holds a copy nobody counts any more, so it is reparsed too. Reopened
        files release their keys in turn until nothing else is affected.
        """
        released = set(self._pending_release)
        self._pending_release.clear()
        # A reparsed file must be able to claim its own earlier records again.
        for file in dirty:
            cached = self._files.get(file.path)
            if cached is not None:
                released |= self._release_keys(cached, deduplication)

        hits, dirty = list(hits), list(dirty)
        while released and hits:
            reopened = [f for f in hits if self._files[f.path].suppressed_keys & released]
            if not reopened:
                break
            hits = [f for f in hits if f not in reopened]
            dirty.extend(reopened)
            released = set()
            for file in reopened:
                released |= self._release_keys(self._files[file.path], deduplication)
        return hits, dirty

    def _parse(
        self,
        files: Sequence[FileMetadata],
        deduplication: Deduplicator,
        strategy: LoadStrategy,
    ) -> Iterator[ParseResult]:
        if strategy is LoadStrategy.NONE:
            return
        if strategy is LoadStrategy.SEQUENTIAL:
            for file in files:
                yield self._parse_one(file, deduplication)
        elif strategy is LoadStrategy.PARALLEL:
            yield from self._parse_parallel(files, deduplication)
        else:
            for batch in batches(files, self.batch_size):
                yield from self._parse_parallel(batch, deduplication)

    def _parse_one(self, file: FileMetadata, deduplication: Deduplicator) -> ParseResult:
        project = decode_project_path(file.project_dir)
        suppressed: Set[str] = set()
        parsed = parse_file(file.path, project, deduplication, self.pricing, suppressed)
        return file, parsed, frozenset(suppressed)

    def _parse_parallel(self, files: Sequence[FileMetadata], deduplication: Deduplicator) -> List[ParseResult]:
        workers = min(self.max_workers, len(files))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [executor.submit(self._parse_one, file, deduplication) for file in files]
            return [future.result() for future in as_completed(futures)]
