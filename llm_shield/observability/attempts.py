"""Per-attempt records for one logical model call.

Every try against a model (including retries, fallbacks and models skipped
because their breaker is open) becomes one Attempt. The pipeline copies the
list onto the PipelineContext so callers can see exactly what happened.

Usage:
    tracker = AttemptTracker()

    attempt = tracker.start("gpt-4o")
    try:
        result = caller.invoke("gpt-4o", payload)
        tracker.complete(attempt, usage=result.usage)
    except Exception as e:
        tracker.complete(attempt, error=e)
"""

import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from llm_shield.interfaces import InstrumentationBus
from llm_shield.models import TokenUsage

MAX_ERROR_MESSAGE_LENGTH = 1000


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Attempt:
    """A single try against one model."""
    model_id: str
    started_at: str
    completed_at: Optional[str] = None
    duration_ms: Optional[int] = None
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    error_class: Optional[str] = None
    error_message: Optional[str] = None
    short_circuited: bool = False

    # Monotonic start, used only for duration
    _started: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.error_class is None and not self.short_circuited

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data.pop("_started", None)
        return data


class AttemptTracker:
    """Collects Attempt records in order.

    Publishes attempt.start, attempt.finish, attempt.error and
    attempt.short_circuit on the bus when one is given.
    """

    def __init__(
        self,
        bus: Optional[InstrumentationBus] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.bus = bus
        self._clock = clock
        self.attempts: list[Attempt] = []

    def start(self, model_id: str) -> Attempt:
        attempt = Attempt(model_id=model_id, started_at=_now_iso(), _started=self._clock())
        self._publish("attempt.start", {"model_id": model_id, "attempt_index": len(self.attempts)})
        return attempt

    def complete(
        self,
        attempt: Attempt,
        usage: Optional[TokenUsage] = None,
        error: Optional[BaseException] = None,
    ) -> Attempt:
        attempt.completed_at = _now_iso()
        attempt.duration_ms = int(round((self._clock() - attempt._started) * 1000))

        if usage is not None:
            attempt.input_tokens = usage.input_tokens
            attempt.output_tokens = usage.output_tokens

        if error is not None:
            attempt.error_class = type(error).__name__
            attempt.error_message = str(error)[:MAX_ERROR_MESSAGE_LENGTH]

        self.attempts.append(attempt)
        self._publish(
            "attempt.error" if error is not None else "attempt.finish",
            attempt.to_dict(),
        )
        return attempt

    def record_short_circuit(self, model_id: str) -> Attempt:
        now = _now_iso()
        attempt = Attempt(
            model_id=model_id,
            started_at=now,
            completed_at=now,
            duration_ms=0,
            error_class="BreakerOpenError",
            error_message="Circuit breaker is open",
            short_circuited=True,
        )
        self.attempts.append(attempt)
        self._publish("attempt.short_circuit", attempt.to_dict())
        return attempt

    @property
    def successful_attempt(self) -> Optional[Attempt]:
        return next((a for a in self.attempts if a.succeeded), None)

    @property
    def last_failed_attempt(self) -> Optional[Attempt]:
        return next((a for a in reversed(self.attempts) if a.error_class), None)

    @property
    def failed_attempts(self) -> list[Attempt]:
        return [a for a in self.attempts if a.error_class and not a.short_circuited]

    @property
    def attempts_count(self) -> int:
        """Real calls made; short-circuited models are not counted."""
        return sum(1 for a in self.attempts if not a.short_circuited)

    @property
    def short_circuited_count(self) -> int:
        return sum(1 for a in self.attempts if a.short_circuited)

    @property
    def total_input_tokens(self) -> int:
        return sum(a.input_tokens or 0 for a in self.attempts)

    @property
    def total_output_tokens(self) -> int:
        return sum(a.output_tokens or 0 for a in self.attempts)

    @property
    def total_duration_ms(self) -> int:
        return sum(a.duration_ms or 0 for a in self.attempts)

    def to_list(self) -> list[dict[str, Any]]:
        return [a.to_dict() for a in self.attempts]

    def _publish(self, name: str, payload: dict[str, Any]) -> None:
        if self.bus is not None:
            self.bus.publish(name, payload)
