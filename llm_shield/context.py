"""Per-invocation pipeline state.

A PipelineContext is created by the caller, handed to PipelineExecutor.run
and mutated in place by each stage in turn. It is never shared between
concurrent invocations.

Usage:
    ctx = PipelineContext(agent_type="summarizer", model="gpt-4o", input={"text": "..."})
    executor.run(ctx)

    if ctx.success:
        print(ctx.output, ctx.model_used, ctx.total_cost)
    else:
        print(ctx.status, ctx.error_message)
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from llm_shield.models import PipelineStatus


@dataclass
class PipelineContext:
    """State threaded through one pipeline run.

    Attributes:
        agent_type: Logical consumer issuing the call
        model: Requested (primary) model
        input: Payload passed to the model caller
        tenant_id: Resolved tenant, None when untenanted
        tenant_config: Runtime budget override for this call
        status: pending until a stage settles the outcome
        attempts: Attempt records, including short-circuited models
        metadata: Free-form values, also reachable as ctx["key"]
    """
    agent_type: str
    model: str
    input: Any = None
    tenant_id: Optional[str] = None
    tenant_config: Optional[dict] = None

    # Accounting
    input_tokens: int = 0
    output_tokens: int = 0
    input_cost: Optional[float] = None
    output_cost: Optional[float] = None
    total_cost: Optional[float] = None
    attempts_made: int = 0
    model_used: Optional[str] = None

    # Timing
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    time_to_first_token_ms: Optional[int] = None

    # Outcome
    output: Any = None
    error: Optional[BaseException] = None
    status: PipelineStatus = PipelineStatus.PENDING
    cached: bool = False

    attempts: list[dict] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    def __getitem__(self, key: str) -> Any:
        return self.metadata.get(key)

    def __setitem__(self, key: str, value: Any) -> None:
        self.metadata[key] = value

    @property
    def success(self) -> bool:
        return self.status == PipelineStatus.SUCCESS

    @property
    def error_kind(self) -> Optional[str]:
        if self.error is None:
            return None
        return getattr(self.error, "kind", None) or type(self.error).__name__

    @property
    def error_message(self) -> Optional[str]:
        return str(self.error) if self.error is not None else None

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    @property
    def duration_ms(self) -> Optional[int]:
        if self.started_at is None or self.completed_at is None:
            return None
        return int((self.completed_at - self.started_at).total_seconds() * 1000)

    def start(self) -> None:
        self.started_at = datetime.now(timezone.utc)

    def finish(self, status: PipelineStatus, error: Optional[BaseException] = None) -> None:
        self.status = status
        if error is not None:
            self.error = error
        self.completed_at = datetime.now(timezone.utc)

    def set_costs(self, input_cost: float, output_cost: float) -> None:
        """Only writer of the cost fields; keeps total == input + output."""
        self.input_cost = round(input_cost, 6)
        self.output_cost = round(output_cost, 6)
        self.total_cost = self.input_cost + self.output_cost

    def to_dict(self) -> dict[str, Any]:
        return {
            "agent_type": self.agent_type,
            "model": self.model,
            "model_used": self.model_used,
            "tenant_id": self.tenant_id,
            "status": self.status.value,
            "cached": self.cached,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "input_cost": self.input_cost,
            "output_cost": self.output_cost,
            "total_cost": self.total_cost,
            "attempts_made": self.attempts_made,
            "attempts": list(self.attempts),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": self.duration_ms,
            "time_to_first_token_ms": self.time_to_first_token_ms,
            "error_kind": self.error_kind,
            "error_message": self.error_message,
        }
