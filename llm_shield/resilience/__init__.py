"""Resilience module: budgets, retry policies and model fallback.

This module provides:
- Retry policies with constant or exponential backoff
- Retry and ordered fallback across models under a total timeout
- Spend and token budgets with none/soft/hard enforcement

Usage:
    from llm_shield.resilience import RetryPolicy, RetryFallbackController

    policy = RetryPolicy(max_retries=3, fallback_models=("gpt-4o-mini",))
    controller = RetryFallbackController(policy, caller)
    result = controller.execute("gpt-4o", payload)
"""

from llm_shield.resilience.retry import (
    RetryPolicy,
    DEFAULT_POLICY,
    AGGRESSIVE_POLICY,
    CONSERVATIVE_POLICY,
    RATE_LIMIT_POLICY,
)
from llm_shield.resilience.fallback import (
    RetryFallbackController,
    FallbackResult,
)
from llm_shield.resilience.budget import (
    BudgetTracker,
    BudgetCheck,
)

__all__ = [
    "RetryPolicy",
    "DEFAULT_POLICY",
    "AGGRESSIVE_POLICY",
    "CONSERVATIVE_POLICY",
    "RATE_LIMIT_POLICY",
    "RetryFallbackController",
    "FallbackResult",
    "BudgetTracker",
    "BudgetCheck",
]
