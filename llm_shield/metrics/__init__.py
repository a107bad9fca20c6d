"""Cost calculation and model pricing."""

from llm_shield.metrics.costs import (
    DEFAULT_PRICING,
    StaticPricingResolver,
    calculate_cost,
    format_cost,
)

__all__ = [
    "DEFAULT_PRICING",
    "StaticPricingResolver",
    "calculate_cost",
    "format_cost",
]
