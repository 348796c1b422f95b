"""
Session windowing for live monitoring.

Segments a chronological stream of usage entries into fixed-length session
blocks, flags the block that is still active, and derives burn rate and
end-of-window projections from a block's current state.

Block rules:
- A block starts at the top of the hour of its first entry and spans
  ``duration_hours``
- An entry past the end of the window, or after a gap longer than
  ``inactivity_gap_minutes``, opens a new block
- A block is active while its last entry is younger than
  ``activity_threshold_minutes`` and its window has not ended
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import FrozenSet, Iterable, List, Optional, Sequence, Tuple

from .token_counter import ZERO_TOKENS, TokenCounts
from claude_usage_core.storage.models import UsageEntry

DEFAULT_DURATION_HOURS = 5
DEFAULT_INACTIVITY_GAP_MINUTES = 300
DEFAULT_ACTIVITY_THRESHOLD_MINUTES = 300


@dataclass(frozen=True)
class BurnRate:
    """Consumption rate of a session block."""
    tokens_per_minute: float
    cost_per_hour: float


@dataclass(frozen=True)
class ProjectedUsage:
    """Estimated usage at the end of a block's window."""
    total_tokens: int
    total_cost: float
    remaining_minutes: float


NO_BURN = BurnRate(tokens_per_minute=0.0, cost_per_hour=0.0)


@dataclass(frozen=True)
class SessionBlock:
    """A contiguous, time-bounded run of usage entries.

    Gap blocks mark idle stretches between two real blocks; they carry no
    entries and are never active.
    """
    id: str
    start_time: datetime
    end_time: datetime
    actual_end_time: Optional[datetime]
    is_active: bool
    is_gap: bool
    entries: Tuple[UsageEntry, ...]
    tokens: TokenCounts
    cost: float
    models: FrozenSet[str]
    burn_rate: BurnRate
    projected_usage: ProjectedUsage

    @property
    def total_tokens(self) -> int:
        return self.tokens.total()

    @property
    def entry_count(self) -> int:
        return len(self.entries)


def floor_to_hour(timestamp: datetime) -> datetime:
    """Top of the UTC hour containing ``timestamp``."""
    return timestamp.astimezone(timezone.utc).replace(minute=0, second=0, microsecond=0)


def _minutes(delta: timedelta) -> float:
    return delta.total_seconds() / 60


def calculate_burn_rate(tokens: int, cost: float, elapsed_minutes: float) -> BurnRate:
    """Tokens per minute and cost per hour over ``elapsed_minutes``.

    A non-positive elapsed time yields a zero rate.
    """
    if elapsed_minutes <= 0:
        return NO_BURN
    return BurnRate(
        tokens_per_minute=tokens / elapsed_minutes,
        cost_per_hour=(cost / elapsed_minutes) * 60,
    )


def project_usage(tokens: int, cost: float, burn_rate: BurnRate, remaining_minutes: float) -> ProjectedUsage:
    """Extrapolate current usage to the end of the window at the current burn rate."""
    remaining_minutes = max(0.0, remaining_minutes)
    return ProjectedUsage(
        total_tokens=int(tokens + burn_rate.tokens_per_minute * remaining_minutes),
        total_cost=cost + burn_rate.cost_per_hour * (remaining_minutes / 60),
        remaining_minutes=remaining_minutes,
    )


class SessionWindower:
    """Splits usage entries into session blocks."""

    def __init__(
        self,
        duration_hours: float = DEFAULT_DURATION_HOURS,
        inactivity_gap_minutes: float = DEFAULT_INACTIVITY_GAP_MINUTES,
        activity_threshold_minutes: float = DEFAULT_ACTIVITY_THRESHOLD_MINUTES,
    ):
        """Initialize the windower.

        Raises:
            ValueError: If any duration is not positive
        """
        if duration_hours <= 0:
            raise ValueError("duration_hours must be positive")
        if inactivity_gap_minutes <= 0:
            raise ValueError("inactivity_gap_minutes must be positive")
        if activity_threshold_minutes <= 0:
            raise ValueError("activity_threshold_minutes must be positive")

        self.duration = timedelta(hours=duration_hours)
        self.inactivity_gap = timedelta(minutes=inactivity_gap_minutes)
        self.activity_threshold = timedelta(minutes=activity_threshold_minutes)

    def identify_blocks(
        self,
        entries: Iterable[UsageEntry],
        now: Optional[datetime] = None,
        include_gaps: bool = False,
    ) -> List[SessionBlock]:
        """Segment entries into session blocks.

        Args:
            entries: Usage entries in any order
            now: Reference time for activity and projections (defaults to
                the current UTC time)
            include_gaps: Insert gap blocks between blocks separated by more
                than the session duration

        Returns:
            Blocks in chronological order; empty if there are no entries
        """
        now = now or datetime.now(timezone.utc)
        blocks = [self._build_block(run, now) for run in self._split(entries)]
        if include_gaps:
            blocks = self._with_gaps(blocks)
        return blocks

    def _split(self, entries: Iterable[UsageEntry]) -> List[List[UsageEntry]]:
        runs: List[List[UsageEntry]] = []
        current: List[UsageEntry] = []
        block_end = None

        for entry in sorted(entries, key=lambda e: e.timestamp):
            if current:
                past_window = entry.timestamp > block_end
                idle = entry.timestamp - current[-1].timestamp > self.inactivity_gap
                if past_window or idle:
                    runs.append(current)
                    current = []
            if not current:
                block_end = floor_to_hour(entry.timestamp) + self.duration
            current.append(entry)

        if current:
            runs.append(current)
        return runs

    def _build_block(self, run: Sequence[UsageEntry], now: datetime) -> SessionBlock:
        start = floor_to_hour(run[0].timestamp)
        end = start + self.duration
        actual_end = run[-1].timestamp

        tokens = sum((e.tokens for e in run), ZERO_TOKENS)
        cost = sum(e.cost for e in run)
        burn_rate = calculate_burn_rate(tokens.total(), cost, _minutes(actual_end - start))
        projected = project_usage(tokens.total(), cost, burn_rate, _minutes(end - actual_end))
        is_active = now - actual_end < self.activity_threshold and now < end

        return SessionBlock(
            id=start.isoformat(),
            start_time=start,
            end_time=end,
            actual_end_time=actual_end,
            is_active=is_active,
            is_gap=False,
            entries=tuple(run),
            tokens=tokens,
            cost=cost,
            models=frozenset(e.model for e in run),
            burn_rate=burn_rate,
            projected_usage=projected,
        )

    def _with_gaps(self, blocks: Sequence[SessionBlock]) -> List[SessionBlock]:
        result: List[SessionBlock] = []
        for block in blocks:
            if result:
                gap = self._gap_between(result[-1], block)
                if gap is not None:
                    result.append(gap)
            result.append(block)
        return result

    def _gap_between(self, previous: SessionBlock, following: SessionBlock) -> Optional[SessionBlock]:
        gap_start = previous.actual_end_time + self.duration
        gap_end = following.start_time
        if gap_end <= gap_start:
            return None
        return SessionBlock(
            id="gap-" + gap_start.isoformat(),
            start_time=gap_start,
            end_time=gap_end,
            actual_end_time=None,
            is_active=False,
            is_gap=True,
            entries=(),
            tokens=ZERO_TOKENS,
            cost=0.0,
            models=frozenset(),
            burn_rate=NO_BURN,
            projected_usage=ProjectedUsage(total_tokens=0, total_cost=0.0, remaining_minutes=0.0),
        )


def active_block(blocks: Iterable[SessionBlock]) -> Optional[SessionBlock]:
    """The active block with the most recent last entry, or None."""
    active = [b for b in blocks if b.is_active and not b.is_gap]
    if not active:
        return None
    return max(active, key=lambda b: b.actual_end_time)


def auto_token_limit(blocks: Iterable[SessionBlock]) -> Optional[int]:
    """Largest token total among closed blocks.

    Returns:
        The maximum, or None if no block has closed or all closed blocks
        are empty
    """
    totals = [b.total_tokens for b in blocks if not b.is_active and not b.is_gap]
    if not totals or max(totals) == 0:
        return None
    return max(totals)
