"""Cost calculation utilities.

Prices are USD per million tokens. The pipeline asks a PricingResolver for
a model's price and multiplies by the call's token usage; anything that goes
wrong during lookup degrades to a zero cost.
"""

from typing import Optional, Union

from llm_shield.models import ModelPricing, TokenUsage

DEFAULT_PRICING = {
    "gpt-4o": {"input": 2.50, "output": 10.00},
    "gpt-4o-mini": {"input": 0.15, "output": 0.60},
    "claude-sonnet": {"input": 3.00, "output": 15.00},
    "claude-haiku": {"input": 0.80, "output": 4.00},
    "gemini-flash": {"input": 0.10, "output": 0.40},
}

PricingLike = Union[ModelPricing, dict]


def _as_pricing(pricing: Optional[PricingLike]) -> Optional[ModelPricing]:
    if pricing is None:
        return None
    if isinstance(pricing, ModelPricing):
        return pricing
    return ModelPricing(
        input=float(pricing.get("input", 0) or 0),
        output=float(pricing.get("output", 0) or 0),
    )


def calculate_cost(
    tokens: TokenUsage, pricing: Optional[PricingLike]
) -> tuple[float, float, float]:
    """Calculate (input_cost, output_cost, total_cost) in USD.

    Args:
        tokens: Token usage for the call
        pricing: Per-million prices, either ModelPricing or {"input", "output"}

    Returns:
        Three costs rounded to 6 decimals; all zero when pricing is None.
    """
    resolved = _as_pricing(pricing)
    if resolved is None:
        return 0.0, 0.0, 0.0

    input_cost = round(tokens.input_tokens / 1_000_000 * resolved.input, 6)
    output_cost = round(tokens.output_tokens / 1_000_000 * resolved.output, 6)
    return input_cost, output_cost, round(input_cost + output_cost, 6)


def format_cost(cost_usd: float) -> str:
    """Format cost as a readable string."""
    if cost_usd < 0.01:
        return f"${cost_usd:.4f}"
    return f"${cost_usd:.2f}"


class StaticPricingResolver:
    """PricingResolver backed by an in-process table.

    Unknown models resolve to None. Lookups fall back to the longest known
    prefix so dated model ids ("gpt-4o-2024-08-06") share the base price.

    Usage:
        pricing = StaticPricingResolver({"my-model": {"input": 1.0, "output": 2.0}})
        pricing.price_per_million_tokens("my-model")
    """

    def __init__(self, table: Optional[dict[str, PricingLike]] = None):
        source = DEFAULT_PRICING if table is None else table
        self._table = {model: _as_pricing(price) for model, price in source.items()}

    def price_per_million_tokens(self, model_id: str) -> Optional[ModelPricing]:
        if model_id in self._table:
            return self._table[model_id]

        candidates = [m for m in self._table if model_id.startswith(m)]
        if not candidates:
            return None
        return self._table[max(candidates, key=len)]

    def register(self, model_id: str, pricing: PricingLike) -> None:
        self._table[model_id] = _as_pricing(pricing)
