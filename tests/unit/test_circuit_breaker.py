"""Tests for circuit breaker."""

import time

import pytest

from llm_shield.circuit_breaker import BreakerRegistry, CircuitBreaker
from llm_shield.config import BreakerConfig
from llm_shield.counters import InMemoryCounterStore
from llm_shield.observability.alerts import AlertDispatcher
from llm_shield.tenancy import StaticTenantResolver


@pytest.fixture
def config():
    return BreakerConfig(errors_threshold=3, window_seconds=60, cooldown_seconds=300)


@pytest.fixture
def breaker(store, config, clock):
    return CircuitBreaker(store, "summarizer", "gpt-4o", config=config, clock=clock)


class TestCircuitBreaker:
    def test_closed_initially(self, breaker):
        assert breaker.is_open() is False
        assert breaker.failure_count() == 0
        assert breaker.time_until_close() is None

    def test_opens_at_threshold(self, breaker):
        assert breaker.record_failure() is False
        assert breaker.record_failure() is False
        assert breaker.record_failure() is True
        assert breaker.is_open() is True

    def test_counter_cleared_when_tripped(self, breaker):
        for _ in range(3):
            breaker.record_failure()
        assert breaker.failure_count() == 0

    def test_time_until_close(self, breaker, clock):
        for _ in range(3):
            breaker.record_failure()
        clock.advance(100)
        assert breaker.time_until_close() == pytest.approx(200)

    def test_closes_after_cooldown(self, breaker, clock):
        for _ in range(3):
            breaker.record_failure()
        clock.advance(301)
        assert breaker.is_open() is False

    def test_reopening_needs_full_threshold(self, breaker, clock):
        for _ in range(3):
            breaker.record_failure()
        clock.advance(301)

        assert breaker.record_failure() is False
        assert breaker.is_open() is False
        breaker.record_failure()
        assert breaker.record_failure() is True

    def test_failures_in_old_window_discarded(self, breaker, clock):
        breaker.record_failure()
        breaker.record_failure()
        clock.advance(60)
        assert breaker.record_failure() is False
        assert breaker.failure_count() == 1

    def test_window_spanning_minute_boundary(self, breaker, clock):
        clock.advance(60 - clock() % 60 - 1)

        results = []
        for _ in range(3):
            results.append(breaker.record_failure())
            clock.advance(1)

        assert results == [False, False, True]
        assert breaker.is_open() is True

    def test_window_starts_at_first_failure(self, breaker, clock):
        breaker.record_failure()
        clock.advance(59)
        breaker.record_failure()
        assert breaker.failure_count() == 2

        clock.advance(1)
        assert breaker.failure_count() == 0
        assert breaker.record_failure() is False

    def test_success_resets_counter(self, breaker):
        breaker.record_failure()
        breaker.record_failure()
        breaker.record_success()
        assert breaker.failure_count() == 0
        assert breaker.record_failure() is False

    def test_success_keeps_counter_when_asked(self, breaker):
        breaker.record_failure()
        breaker.record_success(reset_counter=False)
        assert breaker.failure_count() == 1

    def test_reset_force_closes(self, breaker):
        for _ in range(3):
            breaker.record_failure()
        breaker.reset()
        assert breaker.is_open() is False
        assert breaker.failure_count() == 0

    def test_stale_open_marker_replaced(self, store, breaker, clock):
        # Marker still present but its timestamp is in the past
        store.set("cb:global:open:summarizer:gpt-4o", repr(clock() - 10))
        for _ in range(3):
            breaker.record_failure()
        assert breaker.is_open() is True

    def test_state_shared_through_store(self, store, config, clock):
        first = CircuitBreaker(store, "summarizer", "gpt-4o", config=config, clock=clock)
        second = CircuitBreaker(store, "summarizer", "gpt-4o", config=config, clock=clock)
        for _ in range(3):
            first.record_failure()
        assert second.is_open() is True

    def test_keys_are_tenant_scoped(self, store, config, clock):
        acme = CircuitBreaker(store, "summarizer", "gpt-4o", tenant_id="acme", config=config, clock=clock)
        globex = CircuitBreaker(store, "summarizer", "gpt-4o", tenant_id="globex", config=config, clock=clock)
        for _ in range(3):
            acme.record_failure()
        assert acme.is_open() is True
        assert globex.is_open() is False
        assert "cb:tenant:acme:open:summarizer:gpt-4o" in store.keys("cb:")

    def test_open_alert_sent_once(self, store, config, clock, sink):
        alerts = AlertDispatcher(sinks=[sink])
        breaker = CircuitBreaker(store, "summarizer", "gpt-4o", config=config, alerts=alerts, clock=clock)

        for _ in range(5):
            breaker.record_failure()

        assert sink.kinds == ["breaker_open"]
        payload = sink.events[0].payload
        assert payload["agent_type"] == "summarizer"
        assert payload["model_id"] == "gpt-4o"
        assert payload["errors"] == 3
        assert payload["within"] == 60
        assert payload["cooldown"] == 300

    def test_status(self, breaker):
        breaker.record_failure()
        status = breaker.status()
        assert status["open"] is False
        assert status["failure_count"] == 1
        assert status["errors_threshold"] == 3

    def test_real_clock_cooldown(self):
        store = InMemoryCounterStore(namespace="test")
        breaker = CircuitBreaker(
            store,
            "summarizer",
            "gpt-4o",
            config=BreakerConfig(errors_threshold=3, window_seconds=60, cooldown_seconds=1),
        )
        for _ in range(3):
            breaker.record_failure()
        assert breaker.is_open() is True

        time.sleep(1.1)

        assert breaker.is_open() is False


class TestBreakerRegistry:
    def test_caches_breakers(self, store, config, clock):
        registry = BreakerRegistry(store, config, clock=clock)
        assert registry.get("summarizer", "gpt-4o") is registry.get("summarizer", "gpt-4o")

    def test_breakers_isolated_per_model(self, store, config, clock):
        registry = BreakerRegistry(store, config, clock=clock)
        for _ in range(3):
            registry.get("summarizer", "gpt-4o").record_failure()

        assert registry.is_open("summarizer", "gpt-4o") is True
        assert registry.is_open("summarizer", "claude-haiku") is False
        assert registry.is_open("classifier", "gpt-4o") is False

    def test_tenant_override(self, store, config, clock):
        resolver = StaticTenantResolver(breakers={"acme": {"errors": 1, "cooldown": 10}})
        registry = BreakerRegistry(store, config, clock=clock, tenant_resolver=resolver, multi_tenancy=True)

        acme = registry.get("summarizer", "gpt-4o", "acme")
        assert acme.errors_threshold == 1
        assert acme.cooldown_seconds == 10
        assert acme.window_seconds == 60
        assert registry.get("summarizer", "gpt-4o", "globex").errors_threshold == 3

    def test_status_and_reset(self, store, config, clock):
        registry = BreakerRegistry(store, config, clock=clock)
        for _ in range(3):
            registry.get("summarizer", "gpt-4o").record_failure()

        statuses = registry.status("summarizer", ["gpt-4o", "claude-haiku"])
        assert [s["open"] for s in statuses] == [True, False]

        registry.reset("summarizer", "gpt-4o")
        assert registry.is_open("summarizer", "gpt-4o") is False
