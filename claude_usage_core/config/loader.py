"""
Configuration management and loading.

Handles monitor settings from a YAML file and environment variables.
"""

import os
from dataclasses import dataclass, field
from datetime import timezone, tzinfo
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from claude_usage_core.core.pricing import PRICING_TABLE, ModelPricing, PricingTable
from claude_usage_core.storage.discovery import DEFAULT_SKIP_PREFIXES

PROJECTS_DIR_ENV = "CLAUDE_USAGE_PROJECTS_DIR"
DEFAULT_PROJECTS_DIR = "~/.claude/projects"

PRICING_KEYS = {
    "input": "input_per_million",
    "output": "output_per_million",
    "cache_write": "cache_write_per_million",
    "cache_read": "cache_read_per_million",
}


def default_projects_dir() -> str:
    """Projects directory from the environment, else ``~/.claude/projects``."""
    return os.path.expanduser(os.environ.get(PROJECTS_DIR_ENV) or DEFAULT_PROJECTS_DIR)


# Longest session window or gap accepted, in hours.
MAX_SESSION_HOURS = 24 * 366


@dataclass(frozen=True)
class SessionConfig:
    """Session windowing settings."""
    duration_hours: float = 5.0
    inactivity_gap_minutes: float = 300.0
    activity_threshold_minutes: float = 300.0
    token_limit: Optional[int] = None

    def __post_init__(self):
        """Validate durations are positive and at most MAX_SESSION_HOURS."""
        if self.duration_hours <= 0:
            raise ValueError("duration_hours must be > 0")
        if self.inactivity_gap_minutes <= 0:
            raise ValueError("inactivity_gap_minutes must be > 0")
        if self.activity_threshold_minutes <= 0:
            raise ValueError("activity_threshold_minutes must be > 0")
        if max(self.duration_hours, self.inactivity_gap_minutes / 60,
               self.activity_threshold_minutes / 60) > MAX_SESSION_HOURS:
            raise ValueError(f"session durations must be at most {MAX_SESSION_HOURS} hours")
        if self.token_limit is not None and self.token_limit <= 0:
            raise ValueError("token_limit must be > 0")


@dataclass(frozen=True)
class CacheConfig:
    """Entry cache and parse fan-out settings."""
    assume_immutable_before_today: bool = True
    sequential_threshold: int = 5
    batch_threshold: int = 500
    batch_size: int = 100
    max_workers: Optional[int] = None

    def __post_init__(self):
        if self.sequential_threshold < 0:
            raise ValueError("sequential_threshold must be >= 0")
        if self.sequential_threshold >= self.batch_threshold:
            raise ValueError("sequential_threshold must be < batch_threshold")
        if self.batch_size <= 0:
            raise ValueError("batch_size must be > 0")
        if self.max_workers is not None and self.max_workers <= 0:
            raise ValueError("max_workers must be > 0")


@dataclass(frozen=True)
class DiscoveryConfig:
    """File discovery settings."""
    skip_prefixes: Tuple[str, ...] = DEFAULT_SKIP_PREFIXES


@dataclass(frozen=True)
class MonitorConfig:
    """Complete monitor configuration."""
    projects_dir: str = field(default_factory=default_projects_dir)
    timezone: Optional[str] = None
    session: SessionConfig = field(default_factory=SessionConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    discovery: DiscoveryConfig = field(default_factory=DiscoveryConfig)
    pricing: PricingTable = PRICING_TABLE

    def __post_init__(self):
        """Validate the time zone name."""
        if self.timezone is not None:
            _zone(self.timezone)

    @property
    def tzinfo(self) -> Optional[tzinfo]:
        """Configured time zone, or None for the local time zone."""
        return _zone(self.timezone) if self.timezone else None

    def with_projects_dir(self, projects_dir: str) -> "MonitorConfig":
        return MonitorConfig(
            projects_dir=os.path.expanduser(projects_dir),
            timezone=self.timezone,
            session=self.session,
            cache=self.cache,
            discovery=self.discovery,
            pricing=self.pricing,
        )


def _zone(name: str) -> tzinfo:
    if name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(f"Unknown timezone: {name}")


def default_config() -> MonitorConfig:
    """Configuration with every setting at its default."""
    return MonitorConfig()


def load_config(path: str) -> MonitorConfig:
    """Load and validate monitor configuration from YAML file.

    Unknown keys and wrong types are rejected rather than ignored. Absent
    sections and an empty file fall back to defaults.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated MonitorConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if raw_config is None:
        return default_config()
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    allowed_top_keys = {'projects_dir', 'timezone', 'session', 'cache', 'discovery', 'pricing'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    projects_dir = raw_config.get('projects_dir')
    if projects_dir is not None and not isinstance(projects_dir, str):
        raise ValueError("'projects_dir' must be a string")

    timezone_name = raw_config.get('timezone')
    if timezone_name is not None and not isinstance(timezone_name, str):
        raise ValueError("'timezone' must be a string")

    return MonitorConfig(
        projects_dir=os.path.expanduser(projects_dir) if projects_dir else default_projects_dir(),
        timezone=timezone_name,
        session=_parse_session(_section(raw_config, 'session')),
        cache=_parse_cache(_section(raw_config, 'cache')),
        discovery=_parse_discovery(_section(raw_config, 'discovery')),
        pricing=_parse_pricing(_section(raw_config, 'pricing')),
    )


def _section(raw_config: Dict, name: str) -> Dict:
    data = raw_config.get(name)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")
    return data


def _check_keys(data: Dict, allowed: set, path: str) -> None:
    unknown_keys = set(data.keys()) - allowed
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")


def _number(data: Dict, key: str, path: str, default: Any, integer: bool = False) -> Any:
    """Read an optional numeric value, rejecting booleans and strings."""
    value = data.get(key)
    if value is None:
        return default
    allowed = (int,) if integer else (int, float)
    if isinstance(value, bool) or not isinstance(value, allowed):
        kind = "an integer" if integer else "a number"
        raise ValueError(f"'{key}' in {path} must be {kind}")
    return value


def _parse_session(data: Dict) -> SessionConfig:
    _check_keys(
        data,
        {'duration_hours', 'inactivity_gap_minutes', 'activity_threshold_minutes', 'token_limit'},
        "session",
    )
    defaults = SessionConfig()
    return SessionConfig(
        duration_hours=float(_number(data, 'duration_hours', "session", defaults.duration_hours)),
        inactivity_gap_minutes=float(
            _number(data, 'inactivity_gap_minutes', "session", defaults.inactivity_gap_minutes)
        ),
        activity_threshold_minutes=float(
            _number(data, 'activity_threshold_minutes', "session", defaults.activity_threshold_minutes)
        ),
        token_limit=_number(data, 'token_limit', "session", None, integer=True),
    )


def _parse_cache(data: Dict) -> CacheConfig:
    _check_keys(
        data,
        {'assume_immutable_before_today', 'sequential_threshold', 'batch_threshold', 'batch_size', 'max_workers'},
        "cache",
    )
    defaults = CacheConfig()

    immutable = data.get('assume_immutable_before_today', defaults.assume_immutable_before_today)
    if not isinstance(immutable, bool):
        raise ValueError("'assume_immutable_before_today' in cache must be a boolean")

    return CacheConfig(
        assume_immutable_before_today=immutable,
        sequential_threshold=_number(data, 'sequential_threshold', "cache", defaults.sequential_threshold, integer=True),
        batch_threshold=_number(data, 'batch_threshold', "cache", defaults.batch_threshold, integer=True),
        batch_size=_number(data, 'batch_size', "cache", defaults.batch_size, integer=True),
        max_workers=_number(data, 'max_workers', "cache", None, integer=True),
    )


def _parse_discovery(data: Dict) -> DiscoveryConfig:
    _check_keys(data, {'skip_prefixes'}, "discovery")
    prefixes = data.get('skip_prefixes')
    if prefixes is None:
        return DiscoveryConfig()
    if not isinstance(prefixes, list) or not all(isinstance(p, str) and p for p in prefixes):
        raise ValueError("'skip_prefixes' in discovery must be a list of non-empty strings")
    return DiscoveryConfig(skip_prefixes=tuple(prefixes))


def _parse_pricing(data: Dict) -> PricingTable:
    """Parse pricing overrides and merge them over the built-in table.

    Families not in the built-in table must give all four rates.
    """
    overrides = {}
    for family, rates in data.items():
        path = f"pricing.{family}"
        if not isinstance(rates, dict):
            raise ValueError(f"'{path}' must be a dictionary")
        _check_keys(rates, set(PRICING_KEYS), path)

        base = PRICING_TABLE.prices.get(family)
        if base is None and set(rates) != set(PRICING_KEYS):
            raise ValueError(f"New pricing family '{family}' must define {sorted(PRICING_KEYS)}")

        values = {}
        for key, attribute in PRICING_KEYS.items():
            rate = _number(rates, key, path, None)
            if rate is None:
                if base is None:
                    raise ValueError(f"'{key}' in {path} must be a number")
                values[attribute] = getattr(base, attribute)
                continue
            if rate < 0:
                raise ValueError(f"'{key}' in {path} must be >= 0")
            values[attribute] = Decimal(str(rate))
        overrides[str(family)] = ModelPricing(**values)

    if not overrides:
        return PRICING_TABLE
    return PRICING_TABLE.with_overrides(overrides)
