"""
Cross-file deduplication of usage records.

The same assistant response can be logged in more than one session file
(resumed or forked sessions). A record is identified by the composite key
``message_id:request_id``; records missing either id are never suppressed.
"""

import threading
from typing import Iterable, Optional


def make_dedup_key(message_id: Optional[str], request_id: Optional[str]) -> Optional[str]:
    """Build the composite key, or None if either id is absent."""
    if message_id is None or request_id is None:
        return None
    return f"{message_id}:{request_id}"


class Deduplicator:
    """Thread-safe set of seen composite keys.

    A single lock serializes check-and-insert so concurrent file parsers
    never both admit the same key.
    """

    def __init__(self):
        self._seen = set()
        self._lock = threading.Lock()

    def should_include(self, message_id: Optional[str], request_id: Optional[str]) -> bool:
        """Return True on the first sighting of a key, False for duplicates.

        Records without a complete key are always included.
        """
        key = make_dedup_key(message_id, request_id)
        if key is None:
            return True
        with self._lock:
            if key in self._seen:
                return False
            self._seen.add(key)
            return True

    def release(self, keys: Iterable[Optional[str]]) -> None:
        """Forget keys so their records can be admitted again."""
        with self._lock:
            for key in keys:
                if key is not None:
                    self._seen.discard(key)

    def clear(self) -> None:
        with self._lock:
            self._seen.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._seen)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._seen
