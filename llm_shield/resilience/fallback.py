"""Retry and ordered fallback across models.

Performs one logical call: tries the primary model, retries it while the
error is retryable and retries remain, then moves down the fallback list.
A wall-clock ceiling (total_timeout) is checked before every attempt.

Useful for:
- Model unavailability
- Rate limiting
- Provider outages

Usage:
    controller = RetryFallbackController(
        RetryPolicy(max_retries=2, fallback_models=("gpt-4o-mini", "claude-haiku")),
        caller,
    )

    result = controller.execute("gpt-4o", {"prompt": "..."})
    print(f"Used model: {result.model_used} after {result.attempts_made} attempts")
"""

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from llm_shield.exceptions import AllModelsExhaustedError, TotalTimeoutError
from llm_shield.interfaces import InstrumentationBus, ModelCaller
from llm_shield.logging.structured import get_logger
from llm_shield.models import CallResult, TokenUsage
from llm_shield.observability.attempts import AttemptTracker
from llm_shield.resilience.retry import RetryPolicy

logger = get_logger(__name__)


@dataclass
class FallbackResult:
    """Successful outcome of a retry/fallback run."""
    output: Any
    usage: TokenUsage
    model_used: str
    attempts_made: int
    models_tried: list[str] = field(default_factory=list)
    attempts: list[dict] = field(default_factory=list)
    time_to_first_token_ms: Optional[int] = None

    @property
    def degraded(self) -> bool:
        """Whether a fallback model was used."""
        return bool(self.models_tried) and self.model_used != self.models_tried[0]


def normalize_call_result(result: Any) -> CallResult:
    """Accept a CallResult or an (output, usage) pair from a ModelCaller.

    Raises:
        TypeError: For any other shape.
    """
    if isinstance(result, CallResult):
        return result
    if isinstance(result, tuple) and len(result) == 2:
        output, usage = result
        if usage is None:
            usage = TokenUsage()
        elif isinstance(usage, dict):
            usage = TokenUsage(**usage)
        elif not isinstance(usage, TokenUsage):
            raise TypeError(f"Unsupported usage type from model caller: {type(usage).__name__}")
        return CallResult(output=output, usage=usage)
    raise TypeError(f"Model caller must return CallResult or (output, usage), got {type(result).__name__}")


class RetryFallbackController:
    """Executes one call under a RetryPolicy.

    Attributes:
        policy: Retry counts, backoff, fallbacks and error classes
        caller: ModelCaller that performs the network call
        breaker_for: Optional model -> breaker lookup; models whose breaker
            is open are skipped and recorded as short-circuited
    """

    def __init__(
        self,
        policy: RetryPolicy,
        caller: ModelCaller,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        breaker_for: Optional[Callable[[str], Any]] = None,
        bus: Optional[InstrumentationBus] = None,
    ):
        self.policy = policy
        self.caller = caller
        self.breaker_for = breaker_for
        self.bus = bus
        self._sleep = sleep
        self._clock = clock

    def execute(
        self,
        primary_model: str,
        payload: Any,
        tracker: Optional[AttemptTracker] = None,
    ) -> FallbackResult:
        """Run the plan.

        Args:
            primary_model: Model tried first
            payload: Passed unchanged to every caller.invoke
            tracker: Receives one record per attempt; pass one in to inspect
                attempts after a failure

        Returns:
            FallbackResult from the first successful attempt

        Raises:
            TotalTimeoutError: total_timeout passed before an attempt
            AllModelsExhaustedError: every model failed or was skipped
            Exception: a non-fallback error, re-raised as is
        """
        tracker = tracker if tracker is not None else AttemptTracker(bus=self.bus, clock=self._clock)
        started = self._clock()
        models_tried: list[str] = []
        attempt_number = 0
        last_error: Optional[BaseException] = None
        error_model: Optional[str] = None
        error_attempt: Optional[int] = None

        for model in self.policy.models_for(primary_model):
            if self._short_circuited(model):
                logger.info("model_short_circuited", model_id=model)
                tracker.record_short_circuit(model)
                continue

            models_tried.append(model)
            retries = 0

            while True:
                self._check_timeout(started)
                attempt_number += 1
                attempt = tracker.start(model)

                try:
                    result = normalize_call_result(self.caller.invoke(model, payload))
                except Exception as e:
                    tracker.complete(attempt, error=e)
                    last_error, error_model, error_attempt = e, model, attempt_number

                    if self.policy.is_non_fallback(e):
                        logger.warning(
                            "non_fallback_error",
                            model_id=model,
                            attempt=attempt_number,
                            error_type=type(e).__name__,
                            error=str(e),
                        )
                        raise

                    if self.policy.should_retry(e, retries):
                        retries += 1
                        delay = self.policy.get_delay(retries, e)
                        logger.info(
                            "retrying_model",
                            model_id=model,
                            retry=retries,
                            max_retries=self.policy.max_retries,
                            delay=round(delay, 3),
                            error=str(e),
                        )
                        self._sleep(delay)
                        continue

                    logger.warning(
                        "model_failed",
                        model_id=model,
                        attempt=attempt_number,
                        error_type=type(e).__name__,
                        error=str(e),
                    )
                    break

                tracker.complete(attempt, usage=result.usage)
                if model != primary_model:
                    logger.info("fallback_model_used", primary_model=primary_model, model_id=model)
                return FallbackResult(
                    output=result.output,
                    usage=result.usage,
                    model_used=model,
                    attempts_made=attempt_number,
                    models_tried=models_tried,
                    attempts=tracker.to_list(),
                    time_to_first_token_ms=result.time_to_first_token_ms,
                )

        raise AllModelsExhaustedError(
            models_tried,
            last_error,
            error_model=error_model,
            error_attempt=error_attempt,
        )

    def _short_circuited(self, model: str) -> bool:
        if self.breaker_for is None:
            return False
        breaker = self.breaker_for(model)
        return breaker is not None and breaker.is_open()

    def _check_timeout(self, started: float) -> None:
        if self.policy.total_timeout is None:
            return
        elapsed = self._clock() - started
        if elapsed > self.policy.total_timeout:
            logger.warning("total_timeout_exceeded", timeout=self.policy.total_timeout, elapsed=round(elapsed, 3))
            raise TotalTimeoutError(self.policy.total_timeout, elapsed)
