"""
Usage record parsing.

Decodes JSONL lines into UsageEntry objects. Malformed, partial, non-assistant
and zero-usage lines are skipped; nothing here raises for bad data.
"""

import json
import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

from claude_usage_core.core.pricing import PRICING_TABLE, PricingTable, calculate_cost
from claude_usage_core.core.token_counter import TokenCounts
from .dedup import Deduplicator
from .models import UsageEntry
from .scanner import candidate_records

logger = logging.getLogger(__name__)

ASSISTANT_TYPE = "assistant"
SYNTHETIC_MODEL = "<synthetic>"

# Records outside these UTC years are rejected so window arithmetic stays in range.
MIN_YEAR = 1970
MAX_YEAR = 9998

USAGE_FIELDS = {
    "input": "input_tokens",
    "output": "output_tokens",
    "cache_write": "cache_creation_input_tokens",
    "cache_read": "cache_read_input_tokens",
}


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp into an aware datetime.

    Accepts a trailing ``Z`` and fractional seconds. Naive values are taken
    as UTC. Returns None for anything unparseable or outside
    ``MIN_YEAR``..``MAX_YEAR`` once converted to UTC.
    """
    if not isinstance(value, str) or not value:
        return None
    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    try:
        utc = parsed.astimezone(timezone.utc)
    except OverflowError:
        return None
    if not MIN_YEAR <= utc.year <= MAX_YEAR:
        return None
    return parsed


def _token_value(usage: Dict[str, Any], key: str) -> int:
    value = usage.get(key)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        return 0
    return value


def extract_tokens(usage: Dict[str, Any]) -> TokenCounts:
    """Read the four token categories; missing or invalid counts become 0."""
    return TokenCounts(**{name: _token_value(usage, key) for name, key in USAGE_FIELDS.items()})


def explicit_cost(record: Dict[str, Any]) -> Optional[float]:
    """Return the record's ``costUSD`` if it is a non-negative number."""
    value = record.get("costUSD")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        cost = float(value)
    except OverflowError:
        return None
    if not math.isfinite(cost) or cost < 0:
        return None
    return cost


def _optional_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


def parse_record(
    record: Any,
    project: str,
    source_file: str,
    table: PricingTable = PRICING_TABLE,
) -> Optional[UsageEntry]:
    """Convert a decoded JSON object into a UsageEntry.

    Args:
        record: Decoded JSON value of one line
        project: Decoded project path the file belongs to
        source_file: Path of the file the line came from
        table: Pricing used when the record has no explicit cost

    Returns:
        UsageEntry, or None if the record is not a billable assistant message
    """
    if not isinstance(record, dict) or record.get("type") != ASSISTANT_TYPE:
        return None

    message = record.get("message")
    if not isinstance(message, dict):
        return None
    usage = message.get("usage")
    if not isinstance(usage, dict):
        return None

    timestamp = parse_timestamp(record.get("timestamp"))
    if timestamp is None:
        return None

    tokens = extract_tokens(usage)
    if not tokens.has_usage():
        return None

    model = _optional_str(message.get("model")) or SYNTHETIC_MODEL
    cost = explicit_cost(record)
    if cost is None:
        cost = calculate_cost(model, tokens, table)

    return UsageEntry(
        timestamp=timestamp,
        project=project,
        model=model,
        tokens=tokens,
        cost=cost,
        source_file=source_file,
        message_id=_optional_str(message.get("id")),
        request_id=_optional_str(record.get("requestId")),
        session_id=_optional_str(record.get("sessionId")),
    )


def parse_bytes(
    data: bytes,
    project: str,
    source_file: str,
    deduplication: Deduplicator,
    table: PricingTable = PRICING_TABLE,
    suppressed: Optional[Set[str]] = None,
) -> List[UsageEntry]:
    """Parse every usable record in a JSONL buffer.

    Only entries that survive validation claim a deduplication key, so the
    keys held by a file are exactly the keys of the entries it returned.

    Args:
        suppressed: Collects the keys of valid records dropped because
            another file already holds them
    """
    entries = []
    skipped = 0
    for raw in candidate_records(data):
        try:
            record = json.loads(raw)
        except (ValueError, RecursionError):
            skipped += 1
            continue

        entry = parse_record(record, project, source_file, table)
        if entry is None:
            continue
        if not deduplication.should_include(entry.message_id, entry.request_id):
            if suppressed is not None:
                suppressed.add(entry.dedup_key)
            continue
        entries.append(entry)

    if skipped:
        logger.debug("Skipped %d undecodable lines in %s", skipped, source_file)
    return entries


def parse_file(
    path: str,
    project: str,
    deduplication: Deduplicator,
    table: PricingTable = PRICING_TABLE,
    suppressed: Optional[Set[str]] = None,
) -> Optional[List[UsageEntry]]:
    """Read and parse one usage file.

    Returns:
        Parsed entries, or None if the file could not be read
    """
    try:
        with open(path, "rb") as f:
            data = f.read()
    except OSError as e:
        logger.warning("Could not read usage file %s: %s", path, e)
        return None
    return parse_bytes(data, project, path, deduplication, table, suppressed)
