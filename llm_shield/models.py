"""Pydantic models for call results, pricing and alert events."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class PipelineStatus(str, Enum):
    """Terminal status of one pipeline invocation."""

    PENDING = "pending"
    SUCCESS = "success"
    BUDGET_REJECTED = "budget_rejected"
    BREAKER_OPEN = "breaker_open"
    ERROR = "error"


class AlertKind(str, Enum):
    """Known alert kinds. Custom kinds are passed as plain strings."""

    BUDGET_SOFT_CAP = "budget_soft_cap"
    BUDGET_HARD_CAP = "budget_hard_cap"
    TOKEN_SOFT_CAP = "token_soft_cap"
    TOKEN_HARD_CAP = "token_hard_cap"
    BREAKER_OPEN = "breaker_open"
    BREAKER_CLOSED = "breaker_closed"
    AGENT_ANOMALY = "agent_anomaly"


class TokenUsage(BaseModel):
    """Token counts from a model call."""

    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)

    @property
    def total(self) -> int:
        return self.input_tokens + self.output_tokens


class CallResult(BaseModel):
    """Normalized response from a ModelCaller.

    Callers translate heterogeneous provider responses into this shape
    before the pipeline sees them.
    """

    output: Any = None
    usage: TokenUsage = Field(default_factory=TokenUsage)
    time_to_first_token_ms: Optional[int] = None


class ModelPricing(BaseModel):
    """USD price per million tokens for one model."""

    input: float = Field(default=0.0, ge=0)
    output: float = Field(default=0.0, ge=0)


class AlertEvent(BaseModel):
    """A structured alert, built by the dispatcher for every notify call."""

    kind: str
    payload: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    tenant_id: Optional[str] = None
    message: str = ""

    def to_history_entry(self) -> dict[str, Any]:
        return {
            "type": self.kind,
            "message": self.message,
            "agent_type": self.payload.get("agent_type"),
            "tenant_id": self.tenant_id,
            "timestamp": self.timestamp.isoformat(),
        }
