"""Reliability pipeline for model-serving API calls."""

from llm_shield.config import (
    AlertConfig,
    BreakerConfig,
    BudgetConfig,
    CacheConfig,
)
from llm_shield.context import PipelineContext
from llm_shield.counters import InMemoryCounterStore, RedisCounterStore
from llm_shield.circuit_breaker import BreakerRegistry, CircuitBreaker
from llm_shield.exceptions import (
    AllModelsExhaustedError,
    BreakerOpenError,
    BudgetExceededError,
    ClassifiedError,
    ShieldError,
    TotalTimeoutError,
)
from llm_shield.models import CallResult, PipelineStatus, TokenUsage
from llm_shield.observability import AlertDispatcher, EventBus
from llm_shield.pipeline import PipelineConfig, PipelineExecutor
from llm_shield.resilience import BudgetTracker, RetryFallbackController, RetryPolicy

__all__ = [
    "AlertConfig",
    "BreakerConfig",
    "BudgetConfig",
    "CacheConfig",
    "PipelineContext",
    "InMemoryCounterStore",
    "RedisCounterStore",
    "BreakerRegistry",
    "CircuitBreaker",
    "AllModelsExhaustedError",
    "BreakerOpenError",
    "BudgetExceededError",
    "ClassifiedError",
    "ShieldError",
    "TotalTimeoutError",
    "CallResult",
    "PipelineStatus",
    "TokenUsage",
    "AlertDispatcher",
    "EventBus",
    "PipelineConfig",
    "PipelineExecutor",
    "BudgetTracker",
    "RetryFallbackController",
    "RetryPolicy",
]
