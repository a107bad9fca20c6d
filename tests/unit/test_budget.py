"""Tests for budget tracking and enforcement."""

from datetime import datetime, timezone

import pytest

from llm_shield.config import AlertConfig, BudgetConfig
from llm_shield.exceptions import BudgetExceededError
from llm_shield.observability.alerts import AlertDispatcher
from llm_shield.resilience.budget import DAILY_TTL_SECONDS, MONTHLY_TTL_SECONDS, BudgetTracker
from llm_shield.tenancy import StaticTenantResolver


def make_tracker(store, date_clock, **kwargs):
    kwargs.setdefault("config", BudgetConfig(enforcement="hard", global_daily=10.0))
    return BudgetTracker(store, clock=date_clock, **kwargs)


class TestRecording:
    def test_record_spend_updates_all_counters(self, store, date_clock):
        tracker = make_tracker(store, date_clock)
        tracker.record_spend("summarizer", 1.25)

        assert tracker.current_spend("global", "daily") == pytest.approx(1.25)
        assert tracker.current_spend("global", "monthly") == pytest.approx(1.25)
        assert tracker.current_spend("agent", "daily", "summarizer") == pytest.approx(1.25)
        assert tracker.current_spend("agent", "monthly", "summarizer") == pytest.approx(1.25)
        assert tracker.current_spend("agent", "daily", "classifier") == 0.0

    def test_key_layout(self, store, date_clock):
        tracker = make_tracker(store, date_clock)
        tracker.record_spend("summarizer", 1.0)

        assert store.keys("budget:") == [
            "budget:global:2026-10",
            "budget:global:2026-10-17",
            "budget:global:agent:summarizer:2026-10",
            "budget:global:agent:summarizer:2026-10-17",
        ]

    def test_counters_expire_after_period(self, store, date_clock):
        tracker = make_tracker(store, date_clock)
        tracker.record_spend("summarizer", 1.0)

        assert store.ttl("budget:global:2026-10-17") == DAILY_TTL_SECONDS
        assert store.ttl("budget:global:2026-10") == MONTHLY_TTL_SECONDS

    def test_ignores_empty_amounts(self, store, date_clock):
        tracker = make_tracker(store, date_clock)
        tracker.record_spend("summarizer", None)
        tracker.record_spend("summarizer", 0)
        tracker.record_spend("summarizer", -2.0)
        assert store.keys() == []

    def test_accumulates(self, store, date_clock):
        tracker = make_tracker(store, date_clock)
        tracker.record_spend("summarizer", 0.1)
        tracker.record_spend("classifier", 0.2)
        assert tracker.current_spend("global", "daily") == pytest.approx(0.3)

    def test_record_tokens(self, store, date_clock):
        tracker = make_tracker(store, date_clock)
        tracker.record_tokens("summarizer", 1500)
        tracker.record_tokens("summarizer", 500)
        tracker.record_tokens("summarizer", 0)

        assert tracker.current_tokens("daily") == 2000
        assert tracker.current_tokens("monthly") == 2000

    def test_new_day_starts_from_zero(self, store, date_clock):
        tracker = make_tracker(store, date_clock)
        tracker.record_spend("summarizer", 4.0)

        date_clock.when = datetime(2026, 10, 18, 0, 30, tzinfo=timezone.utc)

        assert tracker.current_spend("global", "daily") == 0.0
        assert tracker.current_spend("global", "monthly") == pytest.approx(4.0)


class TestEnforcement:
    def test_hard_limit_raises(self, store, date_clock):
        tracker = make_tracker(store, date_clock, config=BudgetConfig(enforcement="hard", global_daily=10.0))
        tracker.record_spend("summarizer", 15.0)

        with pytest.raises(BudgetExceededError) as exc_info:
            tracker.check_budget("summarizer")

        error = exc_info.value
        assert error.scope == "global_daily"
        assert error.limit == 10.0
        assert error.current == pytest.approx(15.0)
        assert error.error_code == "BUDGET_EXCEEDED"

    def test_limit_reached_exactly_is_exceeded(self, store, date_clock):
        tracker = make_tracker(store, date_clock)
        tracker.record_spend("summarizer", 10.0)
        with pytest.raises(BudgetExceededError):
            tracker.check_budget("summarizer")

    def test_under_limit_passes(self, store, date_clock):
        tracker = make_tracker(store, date_clock)
        tracker.record_spend("summarizer", 9.99)
        check = tracker.check_budget("summarizer")
        assert check.exceeded is False

    def test_soft_limit_returns_breach(self, store, date_clock):
        tracker = make_tracker(store, date_clock, config=BudgetConfig(enforcement="soft", global_daily=1.0))
        tracker.record_spend("summarizer", 2.0)

        check = tracker.check_budget("summarizer")

        assert check.exceeded is True
        assert check.soft_breach is True
        assert check.scope == "global_daily"

    def test_none_enforcement_never_blocks(self, store, date_clock):
        tracker = make_tracker(store, date_clock, config=BudgetConfig(enforcement="none", global_daily=1.0))
        tracker.record_spend("summarizer", 2.0)
        check = tracker.check_budget("summarizer")
        assert check.soft_breach is False

    def test_scope_order(self, store, date_clock):
        config = BudgetConfig(
            enforcement="hard",
            global_monthly=100.0,
            per_agent_daily={"summarizer": 1.0},
        )
        tracker = make_tracker(store, date_clock, config=config)
        tracker.record_spend("summarizer", 2.0)

        with pytest.raises(BudgetExceededError) as exc_info:
            tracker.check_budget("summarizer")
        assert exc_info.value.scope == "per_agent_daily"

        # Other agents are not affected by the per-agent limit
        assert tracker.check_budget("classifier").exceeded is False

    def test_token_limit(self, store, date_clock):
        config = BudgetConfig(enforcement="hard", global_daily_tokens=1000)
        tracker = make_tracker(store, date_clock, config=config)
        tracker.record_tokens("summarizer", 1000)

        with pytest.raises(BudgetExceededError) as exc_info:
            tracker.check_token_budget("summarizer")
        assert exc_info.value.scope == "global_daily_tokens"
        assert "Token budget exceeded" in str(exc_info.value)

    def test_runtime_config_overrides_static(self, store, date_clock):
        tracker = make_tracker(store, date_clock, config=BudgetConfig(enforcement="hard", global_daily=100.0))
        tracker.record_spend("summarizer", 6.0)

        assert tracker.check_budget("summarizer").exceeded is False
        with pytest.raises(BudgetExceededError):
            tracker.check_budget("summarizer", tenant_config={"daily_budget_limit": 5.0})

    def test_remaining_budget(self, store, date_clock):
        tracker = make_tracker(store, date_clock)
        tracker.record_spend("summarizer", 4.0)

        assert tracker.remaining_budget("global", "daily") == pytest.approx(6.0)
        assert tracker.remaining_budget("global", "monthly") is None

        tracker.record_spend("summarizer", 20.0)
        assert tracker.remaining_budget("global", "daily") == 0.0

    def test_remaining_token_budget(self, store, date_clock):
        config = BudgetConfig(enforcement="soft", global_daily_tokens=1000)
        tracker = make_tracker(store, date_clock, config=config)
        tracker.record_tokens("summarizer", 400)
        assert tracker.remaining_token_budget("daily") == 600


class TestTenancy:
    def test_tenant_ignored_without_multi_tenancy(self, store, date_clock):
        tracker = make_tracker(store, date_clock)
        tracker.record_spend("summarizer", 1.0, tenant_id="acme")
        assert store.keys("budget:tenant:") == []
        assert tracker.current_spend("global", "daily") == pytest.approx(1.0)

    def test_tenants_isolated(self, store, date_clock):
        tracker = make_tracker(store, date_clock, multi_tenancy=True)
        tracker.record_spend("summarizer", 15.0, tenant_id="acme")

        with pytest.raises(BudgetExceededError) as exc_info:
            tracker.check_budget("summarizer", tenant_id="acme")
        assert exc_info.value.tenant_id == "acme"
        assert tracker.check_budget("summarizer", tenant_id="globex").exceeded is False

    def test_resolver_supplies_tenant_and_limits(self, store, date_clock):
        resolver = StaticTenantResolver(tenant_id="acme", budgets={"acme": {"daily_budget_limit": 1.0}})
        tracker = make_tracker(
            store,
            date_clock,
            config=BudgetConfig(enforcement="hard", global_daily=100.0),
            tenant_resolver=resolver,
            multi_tenancy=True,
        )
        tracker.record_spend("summarizer", 2.0)

        assert store.keys("budget:tenant:acme:")
        with pytest.raises(BudgetExceededError):
            tracker.check_budget("summarizer")

    def test_reset_clears_one_tenant(self, store, date_clock):
        tracker = make_tracker(store, date_clock, multi_tenancy=True)
        tracker.record_spend("summarizer", 1.0, tenant_id="acme")
        tracker.record_spend("summarizer", 1.0, tenant_id="globex")

        assert tracker.reset("acme") == 4
        assert tracker.current_spend("global", "daily", tenant_id="acme") == 0.0
        assert tracker.current_spend("global", "daily", tenant_id="globex") == pytest.approx(1.0)


class TestAlerts:
    def test_alert_when_limit_passed(self, store, date_clock, sink):
        alerts = AlertDispatcher(sinks=[sink])
        tracker = make_tracker(store, date_clock, alerts=alerts)

        tracker.record_spend("summarizer", 11.0)

        assert sink.kinds == ["budget_hard_cap"]
        payload = sink.events[0].payload
        assert payload["scope"] == "global_daily"
        assert payload["limit"] == 10.0
        assert payload["total"] == pytest.approx(11.0)
        assert payload["agent_type"] == "summarizer"

    def test_alert_deduplicated(self, store, date_clock, sink):
        alerts = AlertDispatcher(sinks=[sink])
        tracker = make_tracker(store, date_clock, alerts=alerts)

        tracker.record_spend("summarizer", 11.0)
        tracker.record_spend("summarizer", 1.0)

        assert sink.kinds == ["budget_hard_cap"]

    def test_alert_again_after_dedup_window(self, store, date_clock, clock, sink):
        alerts = AlertDispatcher(sinks=[sink])
        tracker = make_tracker(store, date_clock, alerts=alerts)

        tracker.record_spend("summarizer", 11.0)
        clock.advance(3601)
        tracker.record_spend("summarizer", 1.0)

        assert sink.kinds == ["budget_hard_cap", "budget_hard_cap"]

    def test_no_alert_at_exact_limit(self, store, date_clock, sink):
        alerts = AlertDispatcher(sinks=[sink])
        tracker = make_tracker(store, date_clock, alerts=alerts)
        tracker.record_spend("summarizer", 10.0)
        assert sink.events == []

    def test_soft_alert_kind(self, store, date_clock, sink):
        alerts = AlertDispatcher(sinks=[sink])
        tracker = make_tracker(store, date_clock, config=BudgetConfig(enforcement="soft", global_daily=1.0), alerts=alerts)
        tracker.record_spend("summarizer", 2.0)
        assert sink.kinds == ["budget_soft_cap"]

    def test_token_alert(self, store, date_clock, sink):
        alerts = AlertDispatcher(sinks=[sink])
        config = BudgetConfig(enforcement="soft", global_daily_tokens=100)
        tracker = make_tracker(store, date_clock, config=config, alerts=alerts)
        tracker.record_tokens("summarizer", 150)
        assert sink.kinds == ["token_soft_cap"]

    def test_filtered_event_not_sent(self, store, date_clock, sink):
        alerts = AlertDispatcher(AlertConfig(events=("breaker_open",)), sinks=[sink])
        tracker = make_tracker(store, date_clock, alerts=alerts)
        tracker.record_spend("summarizer", 11.0)
        assert sink.events == []

    def test_notify_breach_shares_dedup(self, store, date_clock, sink):
        alerts = AlertDispatcher(sinks=[sink])
        config = BudgetConfig(enforcement="soft", global_daily=1.0)
        tracker = make_tracker(store, date_clock, config=config, alerts=alerts)
        tracker.record_spend("summarizer", 2.0)

        tracker.notify_breach(tracker.check_budget("summarizer"))

        assert sink.kinds == ["budget_soft_cap"]


class TestReporting:
    def test_forecast(self, store, date_clock):
        config = BudgetConfig(enforcement="soft", global_daily=10.0, global_monthly=100.0)
        tracker = make_tracker(store, date_clock, config=config)
        tracker.record_spend("summarizer", 6.0)

        forecast = tracker.calculate_forecast()

        # 12:00 on the 17th: 12h into the day, 16.5 days into a 31-day month
        assert forecast["daily"]["projected"] == pytest.approx(12.0)
        assert forecast["daily"]["on_track"] is False
        assert forecast["daily"]["hours_remaining"] == 12.0
        assert forecast["monthly"]["projected"] == pytest.approx(round(6.0 / 16.5 * 31, 4))
        assert forecast["monthly"]["days_remaining"] == 14

    def test_forecast_disabled(self, store, date_clock):
        tracker = make_tracker(store, date_clock, config=BudgetConfig(enforcement="none", global_daily=10.0))
        assert tracker.calculate_forecast() is None

    def test_status(self, store, date_clock):
        config = BudgetConfig(
            enforcement="hard",
            global_daily=10.0,
            per_agent_daily={"summarizer": 2.0},
            global_daily_tokens=1000,
        )
        tracker = make_tracker(store, date_clock, config=config)
        tracker.record_spend("summarizer", 1.0)
        tracker.record_tokens("summarizer", 250)

        status = tracker.status("summarizer")

        assert status["enforcement"] == "hard"
        assert status["global_daily"]["remaining"] == pytest.approx(9.0)
        assert status["per_agent_daily"]["percentage_used"] == 50.0
        assert status["global_daily_tokens"]["remaining"] == 750
        assert "forecast" in status
