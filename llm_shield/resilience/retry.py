"""Retry policies with exponential backoff and error classification.

A RetryPolicy is the static plan attached to a pipeline: how many times to
retry one model, how long to wait between tries, which models to fall back
to and which errors must never be retried or fallen back from.

Usage:
    policy = RetryPolicy(
        max_retries=3,
        backoff="exponential",
        base=0.4,
        max_delay=3.0,
        fallback_models=("gpt-4o-mini", "claude-haiku"),
        total_timeout=30.0,
    )

    policy.get_delay(1)    # 0.4
    policy.get_delay(4)    # 3.0 (capped)
    policy.is_retryable(ClassifiedError("429 Too Many Requests"))  # True
"""

import random
from dataclasses import dataclass, replace
from typing import Any, Optional, Type, Union

import httpx

from llm_shield.exceptions import ClassifiedError

BACKOFF_STRATEGIES = ("constant", "exponential")

# Transient failures retried without any configuration
RETRYABLE_EXCEPTIONS: tuple[Type[BaseException], ...] = (
    ConnectionError,
    TimeoutError,
    httpx.TimeoutException,
    httpx.TransportError,
)

# Programming errors: retrying or switching models cannot fix these
NON_FALLBACK_EXCEPTIONS: tuple[Type[BaseException], ...] = (
    TypeError,
    NameError,
    AttributeError,
    NotImplementedError,
)

DEFAULT_RETRYABLE_PATTERNS: tuple[str, ...] = (
    "rate limit",
    "rate_limit",
    "too many requests",
    "429",
    "500",
    "502",
    "503",
    "504",
    "service unavailable",
    "internal server error",
    "bad gateway",
    "gateway timeout",
    "overloaded",
    "capacity",
    "quota",
)

ErrorMatcher = Union[Type[BaseException], str]


@dataclass(frozen=True)
class RetryPolicy:
    """Configuration for retry and fallback behavior.

    Attributes:
        max_retries: Retries per model after the first attempt (default 0)
        backoff: "constant" or "exponential"
        base: Base delay in seconds (default 0.4)
        max_delay: Cap for exponential delays in seconds (default 3.0)
        jitter: Add up to 50% random delay on top (default False)
        total_timeout: Wall-clock ceiling for the whole plan, None for none
        fallback_models: Models tried in order after the primary
        non_fallback_errors: Exception classes or ClassifiedError kinds that
            abort immediately with no retry and no fallback
        retryable_errors: Extra exception classes that are retryable
        retryable_patterns: Extra message substrings that mark an error retryable
    """

    max_retries: int = 0
    backoff: str = "exponential"
    base: float = 0.4
    max_delay: float = 3.0
    jitter: bool = False
    total_timeout: Optional[float] = None
    fallback_models: tuple[str, ...] = ()
    non_fallback_errors: tuple[ErrorMatcher, ...] = ()
    retryable_errors: tuple[Type[BaseException], ...] = ()
    retryable_patterns: tuple[str, ...] = ()

    def __post_init__(self):
        if self.backoff not in BACKOFF_STRATEGIES:
            raise ValueError(f"backoff must be one of {BACKOFF_STRATEGIES}, got {self.backoff!r}")
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        # Sequences are stored as tuples
        for name in ("fallback_models", "non_fallback_errors", "retryable_errors", "retryable_patterns"):
            value = getattr(self, name)
            if not isinstance(value, tuple):
                object.__setattr__(self, name, tuple(value or ()))

    def get_delay(self, attempt: int, error: Optional[BaseException] = None) -> float:
        """Calculate delay before retry number `attempt` (1-indexed).

        A retry_after hint on a ClassifiedError wins, capped at max_delay.
        """
        if isinstance(error, ClassifiedError) and error.retry_after:
            return min(float(error.retry_after), self.max_delay)

        if self.backoff == "constant":
            delay = self.base
        else:
            delay = min(self.base * (2 ** (attempt - 1)), self.max_delay)

        if self.jitter:
            delay += delay * random.random() * 0.5

        return delay

    def is_non_fallback(self, error: BaseException) -> bool:
        """Whether this error must abort the plan with no further attempts."""
        if isinstance(error, NON_FALLBACK_EXCEPTIONS):
            return True

        for matcher in self.non_fallback_errors:
            if isinstance(matcher, str):
                if isinstance(error, ClassifiedError) and error.kind == matcher:
                    return True
            elif isinstance(error, matcher):
                return True
        return False

    def is_retryable(self, error: BaseException) -> bool:
        """Whether retrying the same model might succeed."""
        if isinstance(error, ClassifiedError) and error.retryable is not None:
            return error.retryable

        if isinstance(error, RETRYABLE_EXCEPTIONS + tuple(self.retryable_errors)):
            return True

        message = str(error).lower()
        patterns = DEFAULT_RETRYABLE_PATTERNS + tuple(self.retryable_patterns)
        return any(pattern.lower() in message for pattern in patterns)

    def should_retry(self, error: BaseException, retries_so_far: int) -> bool:
        """Retry the same model when retryable and retries remain."""
        if retries_so_far >= self.max_retries:
            return False
        return self.is_retryable(error)

    def models_for(self, primary_model: str) -> list[str]:
        """Primary followed by fallbacks, blanks and duplicates removed."""
        models: list[str] = []
        for model in (primary_model, *self.fallback_models):
            if model and model not in models:
                models.append(model)
        return models

    def with_overrides(self, **overrides: Any) -> "RetryPolicy":
        return replace(self, **overrides)


# Pre-configured policies for common scenarios
DEFAULT_POLICY = RetryPolicy()

AGGRESSIVE_POLICY = RetryPolicy(
    max_retries=5,
    base=0.25,
    max_delay=2.0,
)

CONSERVATIVE_POLICY = RetryPolicy(
    max_retries=2,
    base=1.0,
    max_delay=10.0,
    total_timeout=60.0,
)

# For rate-limited APIs
RATE_LIMIT_POLICY = RetryPolicy(
    max_retries=5,
    base=2.0,
    max_delay=30.0,
    jitter=True,
)
