"""
Data models for the storage layer.

Defines parsed usage records and the file-level bookkeeping around them.
"""

import os
from dataclasses import dataclass
from datetime import date, datetime, tzinfo
from typing import FrozenSet, Optional, Tuple

from claude_usage_core.core.token_counter import TokenCounts
from claude_usage_core.storage.dedup import make_dedup_key


@dataclass(frozen=True)
class UsageEntry:
    """Immutable record of one billable assistant response.

    Produced only by the entry parser. Owned by the cache entry of the
    file it came from until that file is reparsed.
    """
    timestamp: datetime
    project: str
    model: str
    tokens: TokenCounts
    cost: float
    source_file: str
    message_id: Optional[str] = None
    request_id: Optional[str] = None
    session_id: Optional[str] = None

    @property
    def total_tokens(self) -> int:
        return self.tokens.total()

    @property
    def dedup_key(self) -> Optional[str]:
        """Composite ``message_id:request_id`` key, or None if either is missing."""
        return make_dedup_key(self.message_id, self.request_id)

    def local_date(self, tz: Optional[tzinfo] = None) -> date:
        """Calendar date of the record in ``tz`` (local time zone if None)."""
        return self.timestamp.astimezone(tz).date()


@dataclass(frozen=True)
class FileMetadata:
    """A discovered usage log file.

    ``earliest_timestamp`` is approximated by the modification time; entries
    are re-sorted by their own timestamps wherever order matters.
    """
    path: str
    project_dir: str
    earliest_timestamp: datetime
    modification_time: float

    @property
    def session_name(self) -> str:
        """File name without the ``.jsonl`` suffix."""
        name = os.path.basename(self.path)
        return name[:-len(".jsonl")] if name.endswith(".jsonl") else name


@dataclass(frozen=True)
class CacheEntry:
    """Parsed entries of one file, valid while the file's mtime is unchanged.

    ``suppressed_keys`` are the keys of records the file also contains but
    lost to another file during its parse.
    """
    modification_time: float
    entries: Tuple[UsageEntry, ...]
    suppressed_keys: FrozenSet[str] = frozenset()

    def is_valid_for(self, modification_time: float) -> bool:
        return self.modification_time == modification_time
