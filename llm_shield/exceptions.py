"""Exception classes for the reliability pipeline.

All custom exceptions inherit from ShieldError and include:
- message: Human-readable error message
- error_code: Machine-readable error code (e.g., "BUDGET_EXCEEDED")
- details: Optional dictionary with additional context

Only BudgetExceededError (under hard enforcement), TotalTimeoutError and
AllModelsExhaustedError ever escape the pipeline. BreakerOpenError is never
raised by the breaker itself; the executor attaches it to the context.
"""

from typing import Any, Optional


class ShieldError(Exception):
    """Base exception for all pipeline errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code
        details: Optional dictionary with additional error context
    """

    default_error_code: str = "SHIELD_ERROR"

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to a dictionary for logs and alert payloads."""
        result = {
            "code": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


class BudgetExceededError(ShieldError):
    """Spend or token limit reached under hard enforcement.

    Attributes:
        scope: global_daily, global_monthly, per_agent_daily,
            per_agent_monthly, global_daily_tokens or global_monthly_tokens
        limit: Configured limit for the scope
        current: Current accumulated value
        agent_type: Agent that was being checked
    """

    default_error_code = "BUDGET_EXCEEDED"

    def __init__(
        self,
        scope: str,
        limit: float,
        current: float,
        agent_type: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ):
        self.scope = scope
        self.limit = limit
        self.current = current
        self.agent_type = agent_type
        self.tenant_id = tenant_id

        if "tokens" in scope:
            message = f"Token budget exceeded for {scope}: limit {int(limit)}, current {int(current)}"
        else:
            message = f"Budget exceeded for {scope}"
            if agent_type:
                message += f" ({agent_type})"
            message += f": limit ${limit:.2f}, current ${current:.4f}"

        super().__init__(
            message,
            details={
                "scope": scope,
                "limit": limit,
                "current": current,
                "agent_type": agent_type,
                "tenant_id": tenant_id,
            },
        )


class BreakerOpenError(ShieldError):
    """Calls to this agent/model are suspended until the cooldown elapses."""

    default_error_code = "BREAKER_OPEN"

    def __init__(
        self,
        agent_type: str,
        model_id: str,
        tenant_id: Optional[str] = None,
        retry_in: Optional[float] = None,
    ):
        self.agent_type = agent_type
        self.model_id = model_id
        self.tenant_id = tenant_id
        self.retry_in = retry_in
        super().__init__(
            f"Circuit breaker is open for {agent_type} with model {model_id}",
            details={
                "agent_type": agent_type,
                "model_id": model_id,
                "tenant_id": tenant_id,
                "retry_in": retry_in,
            },
        )


class ClassifiedError(ShieldError):
    """Error raised by a ModelCaller with enough context to route it.

    Attributes:
        kind: Error kind, e.g. "rate_limit", "server_error", "invalid_request"
        retryable: Explicit retry decision; None defers to message patterns
        retry_after: Server hint in seconds (e.g., Retry-After header)
    """

    default_error_code = "MODEL_CALL_FAILED"

    def __init__(
        self,
        message: str,
        kind: str = "unknown",
        retryable: Optional[bool] = None,
        retry_after: Optional[float] = None,
    ):
        self.kind = kind
        self.retryable = retryable
        self.retry_after = retry_after
        super().__init__(
            message,
            details={"kind": kind, "retryable": retryable, "retry_after": retry_after},
        )


class TotalTimeoutError(ShieldError):
    """The retry/fallback plan ran past its wall-clock ceiling."""

    default_error_code = "TOTAL_TIMEOUT"

    def __init__(self, timeout_seconds: float, elapsed_seconds: float):
        self.timeout_seconds = timeout_seconds
        self.elapsed_seconds = elapsed_seconds
        super().__init__(
            f"Total timeout of {timeout_seconds}s exceeded (elapsed: {elapsed_seconds:.2f}s)",
            details={"timeout": timeout_seconds, "elapsed": round(elapsed_seconds, 3)},
        )


class AllModelsExhaustedError(ShieldError):
    """Every model in the fallback chain failed.

    Attributes:
        models_tried: Models attempted, in order
        last_error: The final error encountered
        error_model: Model that produced last_error
        error_attempt: Global attempt number (1-indexed) that produced it
    """

    default_error_code = "ALL_MODELS_EXHAUSTED"

    def __init__(
        self,
        models_tried: list[str],
        last_error: Optional[BaseException],
        error_model: Optional[str] = None,
        error_attempt: Optional[int] = None,
    ):
        self.models_tried = list(models_tried)
        self.last_error = last_error
        self.error_model = error_model
        self.error_attempt = error_attempt
        super().__init__(
            f"All models exhausted: {', '.join(self.models_tried)}. Last error: {last_error}",
            details={
                "models_tried": self.models_tried,
                "last_error": str(last_error) if last_error else None,
                "error_model": error_model,
                "error_attempt": error_attempt,
            },
        )
