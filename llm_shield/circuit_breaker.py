"""Circuit breaker for failing agent/model pairs.

One breaker per (agent_type, model_id, tenant_id). State lives entirely in
the shared counter store so every process sees the same breaker:

- a failure counter whose expiry is set when the first failure creates it,
  so the window starts at that failure and the count drops to zero once
  window_seconds have passed.
- an open marker holding the epoch the breaker stays open until, written
  with set-if-absent and expiring after the cooldown.

Open means the marker exists and its timestamp is in the future. Closing is
passive: nothing fires when the cooldown elapses. The counter is cleared
when the breaker trips, so after the cooldown it takes a full
errors_threshold of new failures to open it again.

Usage:
    breaker = CircuitBreaker(store, "summarizer", "gpt-4o", config=BreakerConfig(errors_threshold=3))

    if breaker.is_open():
        ...  # skip the call
    try:
        call_model()
        breaker.record_success()
    except Exception:
        breaker.record_failure()
"""

import time
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional

from llm_shield.config import BreakerConfig
from llm_shield.interfaces import CounterStore, TenantResolver
from llm_shield.logging.structured import get_logger
from llm_shield.tenancy import resolve_breaker_config, tenant_key_part

logger = get_logger(__name__)


class CircuitBreaker:
    """Failure-rate breaker for one agent/model/tenant.

    Attributes:
        agent_type: Agent the breaker guards
        model_id: Model the breaker guards
        tenant_id: Tenant scope, None for untenanted
        config: Threshold, window and cooldown
    """

    def __init__(
        self,
        store: CounterStore,
        agent_type: str,
        model_id: str,
        tenant_id: Optional[str] = None,
        config: Optional[BreakerConfig] = None,
        alerts=None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.agent_type = agent_type
        self.model_id = model_id
        self.tenant_id = tenant_id
        self.config = config or BreakerConfig()
        self.alerts = alerts
        self._clock = clock

    @property
    def errors_threshold(self) -> int:
        return self.config.errors_threshold

    @property
    def window_seconds(self) -> int:
        return self.config.window_seconds

    @property
    def cooldown_seconds(self) -> int:
        return self.config.cooldown_seconds

    # --- keys ---

    def _base_key(self, kind: str) -> str:
        return f"cb:{tenant_key_part(self.tenant_id)}:{kind}:{self.agent_type}:{self.model_id}"

    @property
    def _count_key(self) -> str:
        return self._base_key("count")

    @property
    def _open_key(self) -> str:
        return self._base_key("open")

    # --- state ---

    def open_until(self) -> Optional[float]:
        raw = self.store.get(self._open_key)
        if raw is None:
            return None
        return float(raw)

    def is_open(self) -> bool:
        until = self.open_until()
        return until is not None and until > self._clock()

    def failure_count(self) -> int:
        raw = self.store.get(self._count_key)
        return int(float(raw)) if raw is not None else 0

    def time_until_close(self) -> Optional[float]:
        """Seconds until the breaker closes, None when closed."""
        until = self.open_until()
        if until is None:
            return None
        remaining = until - self._clock()
        return remaining if remaining > 0 else None

    # --- transitions ---

    def record_failure(self) -> bool:
        """Count a failure. Returns whether the breaker is open afterwards."""
        now = self._clock()
        count = self.store.incr(self._count_key, 1, ttl=self.window_seconds)

        if count >= self.errors_threshold and not self.is_open():
            if self._open(now):
                self._notify_open(int(count))
            return True

        return self.is_open()

    def record_success(self, reset_counter: bool = True) -> None:
        if reset_counter:
            self.store.delete(self._count_key)

    def reset(self) -> None:
        """Force-close and zero the counter."""
        self.store.delete(self._open_key)
        self.store.delete(self._count_key)

    def _open(self, now: float) -> bool:
        """Write the open marker. False when another process opened it first."""
        open_until = now + self.cooldown_seconds
        opened = self.store.set_if_absent(self._open_key, repr(open_until), ttl=self.cooldown_seconds)
        if not opened and not self.is_open():
            # Stale marker whose expiry has not been reaped yet
            self.store.set(self._open_key, repr(open_until), ttl=self.cooldown_seconds)
            opened = True
        if opened:
            self.store.delete(self._count_key)
        return opened

    def _notify_open(self, count: int) -> None:
        logger.warning(
            "breaker_opened",
            agent_type=self.agent_type,
            model_id=self.model_id,
            tenant_id=self.tenant_id,
            failures=count,
            cooldown_seconds=self.cooldown_seconds,
        )
        if self.alerts is None:
            return
        self.alerts.notify("breaker_open", {
            "agent_type": self.agent_type,
            "model_id": self.model_id,
            "tenant_id": self.tenant_id,
            "errors": self.errors_threshold,
            "within": self.window_seconds,
            "cooldown": self.cooldown_seconds,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    def status(self) -> dict[str, Any]:
        return {
            "agent_type": self.agent_type,
            "model_id": self.model_id,
            "tenant_id": self.tenant_id,
            "open": self.is_open(),
            "failure_count": self.failure_count(),
            "time_until_close": self.time_until_close(),
            "errors_threshold": self.errors_threshold,
            "window_seconds": self.window_seconds,
            "cooldown_seconds": self.cooldown_seconds,
        }


class BreakerRegistry:
    """Builds and caches breakers per (agent, model, tenant).

    All breakers share one store, alert dispatcher and clock. Tenants with a
    breaker override from the TenantResolver get their own thresholds.
    """

    def __init__(
        self,
        store: CounterStore,
        config: Optional[BreakerConfig] = None,
        alerts=None,
        clock: Callable[[], float] = time.time,
        tenant_resolver: Optional[TenantResolver] = None,
        multi_tenancy: bool = False,
    ):
        self.store = store
        self.config = config or BreakerConfig()
        self.alerts = alerts
        self.tenant_resolver = tenant_resolver
        self.multi_tenancy = multi_tenancy
        self._clock = clock
        self._breakers: dict[tuple, CircuitBreaker] = {}

    def get(self, agent_type: str, model_id: str, tenant_id: Optional[str] = None) -> CircuitBreaker:
        key = (agent_type, model_id, tenant_id)
        breaker = self._breakers.get(key)
        if breaker is None:
            config = resolve_breaker_config(
                self.config,
                tenant_id=tenant_id,
                multi_tenancy=self.multi_tenancy,
                resolver=self.tenant_resolver,
            )
            breaker = CircuitBreaker(
                self.store,
                agent_type,
                model_id,
                tenant_id=tenant_id,
                config=config,
                alerts=self.alerts,
                clock=self._clock,
            )
            self._breakers[key] = breaker
        return breaker

    def is_open(self, agent_type: str, model_id: str, tenant_id: Optional[str] = None) -> bool:
        return self.get(agent_type, model_id, tenant_id).is_open()

    def status(
        self,
        agent_type: str,
        models: Iterable[str],
        tenant_id: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        return [self.get(agent_type, model, tenant_id).status() for model in models]

    def reset(self, agent_type: str, model_id: str, tenant_id: Optional[str] = None) -> None:
        self.get(agent_type, model_id, tenant_id).reset()
