"""
Line scanning over raw file bytes.

Splits a JSONL buffer into record ranges with a byte-level newline search
and pre-filters ranges that cannot be a complete JSON object.
"""

from typing import Iterator, Tuple

NEWLINE = ord("\n")
OPEN_BRACE = ord("{")
CLOSE_BRACE = ord("}")
_WHITESPACE = frozenset(b" \t\r\n\x0b\x0c")

Range = Tuple[int, int]


def iter_line_ranges(data: bytes) -> Iterator[Range]:
    """Yield ``(start, end)`` offsets of each non-empty line in ``data``.

    ``end`` is exclusive and excludes the newline. A final line without a
    trailing newline is still yielded.
    """
    length = len(data)
    offset = 0
    while offset < length:
        line_end = data.find(NEWLINE, offset)
        if line_end == -1:
            line_end = length
        if line_end > offset:
            yield offset, line_end
        offset = line_end + 1


def trim_range(data: bytes, start: int, end: int) -> Range:
    """Shrink a range so it has no leading or trailing whitespace."""
    while start < end and data[start] in _WHITESPACE:
        start += 1
    while end > start and data[end - 1] in _WHITESPACE:
        end -= 1
    return start, end


def looks_like_json_object(data: bytes, start: int, end: int) -> bool:
    """Cheap check that a trimmed range starts with ``{`` and ends with ``}``.

    Lines truncated by a concurrent writer fail this check and are never
    handed to the JSON decoder.
    """
    start, end = trim_range(data, start, end)
    return end - start >= 2 and data[start] == OPEN_BRACE and data[end - 1] == CLOSE_BRACE


def candidate_records(data: bytes) -> Iterator[bytes]:
    """Yield the bytes of every line that passes ``looks_like_json_object``."""
    for start, end in iter_line_ranges(data):
        start, end = trim_range(data, start, end)
        if looks_like_json_object(data, start, end):
            yield data[start:end]

