"""
Usage aggregation.

Folds a flat list of usage entries into totals plus per-model, per-day and
per-project breakdowns. Pure functions: no I/O, no shared state.
"""

from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone, tzinfo
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from .token_counter import ZERO_TOKENS, TokenCounts
from claude_usage_core.storage.discovery import project_name
from claude_usage_core.storage.models import UsageEntry

DAY_FORMAT = "%Y-%m-%d"
HOURS_PER_DAY = 24


class SortOrder(Enum):
    """Sort order for project queries."""
    ASCENDING = "asc"
    DESCENDING = "desc"


@dataclass(frozen=True)
class ModelUsage:
    """Usage aggregated by model."""
    model: str
    total_cost: float
    tokens: TokenCounts
    entry_count: int

    @property
    def total_tokens(self) -> int:
        return self.tokens.total()


@dataclass(frozen=True)
class DailyUsage:
    """Usage aggregated by calendar day."""
    date: str
    total_cost: float
    tokens: TokenCounts
    models_used: Tuple[str, ...]
    hourly_costs: Tuple[float, ...]

    @property
    def total_tokens(self) -> int:
        return self.tokens.total()

    @property
    def model_count(self) -> int:
        return len(self.models_used)

    @property
    def day(self) -> date:
        return date.fromisoformat(self.date)


@dataclass(frozen=True)
class ProjectUsage:
    """Usage aggregated by project."""
    project_path: str
    project_name: str
    total_cost: float
    total_tokens: int
    session_count: int
    last_used: datetime


@dataclass(frozen=True)
class UsageStats:
    """Overall usage statistics."""
    total_cost: float = 0.0
    total_tokens: int = 0
    total_input: int = 0
    total_output: int = 0
    total_cache_write: int = 0
    total_cache_read: int = 0
    session_count: int = 0
    by_model: Tuple[ModelUsage, ...] = ()
    by_date: Tuple[DailyUsage, ...] = ()
    by_project: Tuple[ProjectUsage, ...] = ()

    def day(self, day: str) -> Optional[DailyUsage]:
        """Daily breakdown for a ``YYYY-MM-DD`` string, if any."""
        for daily in self.by_date:
            if daily.date == day:
                return daily
        return None

    def model(self, name: str) -> Optional[ModelUsage]:
        for usage in self.by_model:
            if usage.model == name:
                return usage
        return None


EMPTY_STATS = UsageStats()


@dataclass
class _DailyBuilder:
    total_cost: float = 0.0
    tokens: TokenCounts = ZERO_TOKENS
    models: Set[str] = field(default_factory=set)
    hourly_costs: List[float] = field(default_factory=lambda: [0.0] * HOURS_PER_DAY)


@dataclass
class _ProjectBuilder:
    total_cost: float = 0.0
    total_tokens: int = 0
    sources: Set[str] = field(default_factory=set)
    last_used: Optional[datetime] = None


class _AggregationState:
    """Running totals for one aggregation pass."""

    def __init__(self, tz: Optional[tzinfo]):
        self.tz = tz
        self.total_cost = 0.0
        self.tokens = ZERO_TOKENS
        self.models: Dict[str, Tuple[float, TokenCounts, int]] = {}
        self.days: Dict[str, _DailyBuilder] = {}
        self.projects: Dict[str, _ProjectBuilder] = {}

    def add(self, entry: UsageEntry) -> None:
        self.total_cost += entry.cost
        self.tokens = self.tokens + entry.tokens
        self._add_model(entry)
        self._add_day(entry)
        self._add_project(entry)

    def _add_model(self, entry: UsageEntry) -> None:
        cost, tokens, count = self.models.get(entry.model, (0.0, ZERO_TOKENS, 0))
        self.models[entry.model] = (cost + entry.cost, tokens + entry.tokens, count + 1)

    def _add_day(self, entry: UsageEntry) -> None:
        local = entry.timestamp.astimezone(self.tz)
        builder = self.days.setdefault(local.strftime(DAY_FORMAT), _DailyBuilder())
        builder.total_cost += entry.cost
        builder.tokens = builder.tokens + entry.tokens
        builder.models.add(entry.model)
        builder.hourly_costs[local.hour] += entry.cost

    def _add_project(self, entry: UsageEntry) -> None:
        builder = self.projects.setdefault(entry.project, _ProjectBuilder())
        builder.total_cost += entry.cost
        builder.total_tokens += entry.total_tokens
        builder.sources.add(entry.source_file)
        if builder.last_used is None or entry.timestamp > builder.last_used:
            builder.last_used = entry.timestamp

    def build(self, session_count: int) -> UsageStats:
        by_model = tuple(
            ModelUsage(model=model, total_cost=cost, tokens=tokens, entry_count=count)
            for model, (cost, tokens, count) in self.models.items()
        )
        by_date = tuple(
            DailyUsage(
                date=day,
                total_cost=builder.total_cost,
                tokens=builder.tokens,
                models_used=tuple(sorted(builder.models)),
                hourly_costs=tuple(builder.hourly_costs),
            )
            for day, builder in sorted(self.days.items())
        )
        by_project = tuple(
            ProjectUsage(
                project_path=path,
                project_name=project_name(path),
                total_cost=builder.total_cost,
                total_tokens=builder.total_tokens,
                session_count=len(builder.sources),
                last_used=builder.last_used,
            )
            for path, builder in self.projects.items()
        )
        return UsageStats(
            total_cost=self.total_cost,
            total_tokens=self.tokens.total(),
            total_input=self.tokens.input,
            total_output=self.tokens.output,
            total_cache_write=self.tokens.cache_write,
            total_cache_read=self.tokens.cache_read,
            session_count=session_count,
            by_model=by_model,
            by_date=by_date,
            by_project=by_project,
        )


def aggregate(entries: Iterable[UsageEntry], session_count: int, tz: Optional[tzinfo] = None) -> UsageStats:
    """Aggregate entries into usage statistics.

    Args:
        entries: Usage entries in any order
        session_count: Number of sessions the entries came from
        tz: Time zone for day and hour bucketing (local time zone if None)

    Returns:
        UsageStats with ``by_date`` sorted ascending by date
    """
    state = _AggregationState(tz)
    for entry in entries:
        state.add(entry)
    return state.build(session_count)


def filter_by_date_range(stats: UsageStats, start: date, end: date) -> UsageStats:
    """Restrict statistics to days in ``[start, end]``.

    Totals are re-derived from the kept daily rows only, so the totals and
    the ``by_date`` slice always agree.

    Raises:
        ValueError: If start is after end
    """
    if start > end:
        raise ValueError("start date must not be after end date")

    kept = tuple(d for d in stats.by_date if start <= d.day <= end)
    tokens = sum((d.tokens for d in kept), ZERO_TOKENS)

    return replace(
        stats,
        total_cost=sum(d.total_cost for d in kept),
        total_tokens=tokens.total(),
        total_input=tokens.input,
        total_output=tokens.output,
        total_cache_write=tokens.cache_write,
        total_cache_read=tokens.cache_read,
        by_date=kept,
    )


def entries_for_date(entries: Iterable[UsageEntry], day: date, tz: Optional[tzinfo] = None) -> List[UsageEntry]:
    """Entries whose timestamp falls on ``day`` in ``tz``, oldest first."""
    return sorted(
        (e for e in entries if e.local_date(tz) == day),
        key=lambda e: e.timestamp,
    )


def entries_in_range(
    entries: Iterable[UsageEntry],
    start: date,
    end: date,
    tz: Optional[tzinfo] = None,
) -> List[UsageEntry]:
    return [e for e in entries if start <= e.local_date(tz) <= end]


def _as_utc(moment: Optional[datetime]) -> Optional[datetime]:
    if moment is not None and moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def filter_projects(
    projects: Sequence[ProjectUsage],
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
) -> List[ProjectUsage]:
    """Projects whose last use falls within the optional bounds.

    Naive bounds are taken as UTC, like naive record timestamps.
    """
    since, until = _as_utc(since), _as_utc(until)
    return [
        p for p in projects
        if (since is None or p.last_used >= since) and (until is None or p.last_used <= until)
    ]


def sort_projects(projects: Sequence[ProjectUsage], order: Optional[SortOrder] = None) -> List[ProjectUsage]:
    """Sort projects by total cost; unchanged order if ``order`` is None."""
    if order is None:
        return list(projects)
    return sorted(projects, key=lambda p: p.total_cost, reverse=order is SortOrder.DESCENDING)
