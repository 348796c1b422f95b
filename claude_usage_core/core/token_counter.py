"""
Token counting and usage tracking.

Holds the four token categories reported in each usage record.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class TokenCounts:
    """Token usage for a single record or an aggregate of records.

    Categories mirror the ``usage`` object of a log line: plain input,
    output, cache writes (cache creation) and cache reads.
    """
    input: int = 0
    output: int = 0
    cache_write: int = 0
    cache_read: int = 0

    def __post_init__(self):
        """Validate token counts are non-negative."""
        for name in ("input", "output", "cache_write", "cache_read"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} tokens cannot be negative")

    def total(self) -> int:
        """Total tokens across all four categories."""
        return self.input + self.output + self.cache_write + self.cache_read

    @property
    def total_tokens(self) -> int:
        return self.total()

    def has_usage(self) -> bool:
        return self.total() > 0

    def __add__(self, other: "TokenCounts") -> "TokenCounts":
        if not isinstance(other, TokenCounts):
            return NotImplemented
        return TokenCounts(
            input=self.input + other.input,
            output=self.output + other.output,
            cache_write=self.cache_write + other.cache_write,
            cache_read=self.cache_read + other.cache_read,
        )


ZERO_TOKENS = TokenCounts()
