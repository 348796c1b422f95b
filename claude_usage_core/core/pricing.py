"""
Pricing calculations and rate management.

Resolves a model identifier to its family's per-token rates and computes
the cost of a record that does not carry an explicit cost value.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Mapping

from .token_counter import TokenCounts

MILLION = Decimal("1000000")


@dataclass(frozen=True)
class ModelPricing:
    """USD pricing per million tokens for one model family."""
    input_per_million: Decimal
    output_per_million: Decimal
    cache_write_per_million: Decimal
    cache_read_per_million: Decimal

    def __post_init__(self):
        """Validate rates are non-negative."""
        for name in (
            "input_per_million",
            "output_per_million",
            "cache_write_per_million",
            "cache_read_per_million",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} cannot be negative")

    @property
    def input_rate(self) -> Decimal:
        """Cost of a single input token."""
        return self.input_per_million / MILLION

    @property
    def output_rate(self) -> Decimal:
        return self.output_per_million / MILLION

    @property
    def cache_write_rate(self) -> Decimal:
        return self.cache_write_per_million / MILLION

    @property
    def cache_read_rate(self) -> Decimal:
        return self.cache_read_per_million / MILLION

    def cost_for(self, tokens: TokenCounts) -> float:
        """Cost of the given token counts at these rates.

        No rounding is applied: per-record costs are routinely sub-cent.
        """
        total = (
            Decimal(tokens.input) * self.input_rate
            + Decimal(tokens.output) * self.output_rate
            + Decimal(tokens.cache_write) * self.cache_write_rate
            + Decimal(tokens.cache_read) * self.cache_read_rate
        )
        return float(total)


@dataclass(frozen=True)
class PricingTable:
    """Pricing keyed by model family.

    A model matches the first family whose name occurs in the model
    identifier (case-insensitive). Unmatched models use the default family.
    """
    prices: Dict[str, ModelPricing]
    default_family: str = "sonnet"
    _lowered: Dict[str, str] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        if self.default_family not in self.prices:
            raise ValueError(f"Default family '{self.default_family}' has no pricing")
        object.__setattr__(self, "_lowered", {family.lower(): family for family in self.prices})

    def family_for(self, model: str) -> str:
        """Return the pricing family a model identifier belongs to."""
        normalized = (model or "").lower()
        for lowered, family in self._lowered.items():
            if lowered in normalized:
                return family
        return self.default_family

    def get_pricing(self, model: str) -> ModelPricing:
        """Get pricing for a model identifier.

        Args:
            model: Model identifier, e.g. ``claude-opus-4-5-20251101``

        Returns:
            ModelPricing of the matching family, or of the default family
        """
        return self.prices[self.family_for(model)]

    def with_overrides(self, overrides: Mapping[str, ModelPricing]) -> "PricingTable":
        """Return a new table with the given families added or replaced."""
        merged = dict(self.prices)
        merged.update(overrides)
        return PricingTable(prices=merged, default_family=self.default_family)


# Claude 4 / 4.5 list prices. Cache write = 1.25x input, cache read = 0.1x input.
PRICING_TABLE = PricingTable({
    "opus": ModelPricing(
        input_per_million=Decimal("5.00"),
        output_per_million=Decimal("25.00"),
        cache_write_per_million=Decimal("6.25"),
        cache_read_per_million=Decimal("0.50"),
    ),
    "sonnet": ModelPricing(
        input_per_million=Decimal("3.00"),
        output_per_million=Decimal("15.00"),
        cache_write_per_million=Decimal("3.75"),
        cache_read_per_million=Decimal("0.30"),
    ),
    "haiku": ModelPricing(
        input_per_million=Decimal("1.00"),
        output_per_million=Decimal("5.00"),
        cache_write_per_million=Decimal("1.25"),
        cache_read_per_million=Decimal("0.10"),
    ),
})


def calculate_cost(model: str, tokens: TokenCounts, table: PricingTable = PRICING_TABLE) -> float:
    """Calculate cost for a model's token usage.

    cost = input*input_rate + output*output_rate
           + cache_write*cache_write_rate + cache_read*cache_read_rate

    Args:
        model: Model identifier
        tokens: Token counts of the record
        table: Pricing table to resolve the model against

    Returns:
        Cost in USD
    """
    return table.get_pricing(model).cost_for(tokens)
