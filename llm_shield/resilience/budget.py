"""Budget accounting and enforcement for model spend.

Spend and token counters live in the shared counter store, one key per
(tenant, scope, period boundary), so every process sees the same totals:

    budget:<tenant>:<YYYY-MM-DD>                  global daily spend
    budget:<tenant>:<YYYY-MM>                     global monthly spend
    budget:<tenant>:agent:<agent>:<YYYY-MM-DD>    per-agent daily spend
    budget:<tenant>:agent:<agent>:<YYYY-MM>       per-agent monthly spend
    tokens:<tenant>:<YYYY-MM-DD> / <YYYY-MM>      global token counters

<tenant> is "tenant:<id>" or "global". Keys expire a little after their
period ends, so a new day or month starts from zero without any reset job.

Usage:
    budget = BudgetTracker(store, BudgetConfig(enforcement="hard", global_daily=10.0))

    # Before calling
    budget.check_budget("summarizer")      # Raises BudgetExceededError when over

    # After calling
    budget.record_spend("summarizer", 0.0123)
    budget.record_tokens("summarizer", 1500)

    budget.status("summarizer")
"""

import calendar
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from llm_shield.config import BudgetConfig
from llm_shield.exceptions import BudgetExceededError
from llm_shield.interfaces import CounterStore, TenantResolver
from llm_shield.logging.structured import get_logger
from llm_shield.tenancy import resolve_budget_config, resolve_tenant_id, tenant_key_part

logger = get_logger(__name__)

# Counters outlive their period by an hour
EXPIRY_SLACK_SECONDS = 3600
DAILY_TTL_SECONDS = 86400 + EXPIRY_SLACK_SECONDS
MONTHLY_TTL_SECONDS = 31 * 86400 + EXPIRY_SLACK_SECONDS

# One cap alert per (tenant, scope) per hour
ALERT_DEDUP_SECONDS = 3600

SCOPES = ("global", "agent")
PERIODS = ("daily", "monthly")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class BudgetCheck:
    """Outcome of a budget check.

    Under hard enforcement a breach raises instead of returning, so a
    returned check with exceeded=True always means soft or none.
    """
    exceeded: bool = False
    scope: Optional[str] = None
    limit: Optional[float] = None
    current: Optional[float] = None
    enforcement: str = "none"
    agent_type: Optional[str] = None
    tenant_id: Optional[str] = None

    @property
    def soft_breach(self) -> bool:
        return self.exceeded and self.enforcement == "soft"

    def to_dict(self) -> dict[str, Any]:
        return {
            "exceeded": self.exceeded,
            "scope": self.scope,
            "limit": self.limit,
            "current": self.current,
            "enforcement": self.enforcement,
            "agent_type": self.agent_type,
            "tenant_id": self.tenant_id,
        }


class BudgetTracker:
    """Time-windowed spend and token accounting with none/soft/hard enforcement.

    Attributes:
        store: Shared counter store
        config: Static budget config; overridden per call by tenant configs
        alerts: Optional AlertDispatcher for cap alerts
        multi_tenancy: When False, tenant ids are ignored everywhere
    """

    def __init__(
        self,
        store: CounterStore,
        config: Optional[BudgetConfig] = None,
        alerts=None,
        tenant_resolver: Optional[TenantResolver] = None,
        multi_tenancy: bool = False,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.config = config or BudgetConfig()
        self.alerts = alerts
        self.tenant_resolver = tenant_resolver
        self.multi_tenancy = multi_tenancy
        self._clock = clock

    # --- resolution ---

    def resolve_tenant(self, tenant_id: Optional[str] = None) -> Optional[str]:
        return resolve_tenant_id(tenant_id, self.multi_tenancy, self.tenant_resolver)

    def resolve_config(
        self,
        tenant_id: Optional[str] = None,
        tenant_config: Optional[dict] = None,
    ) -> BudgetConfig:
        """Effective config: runtime override, then tenant resolver, then static."""
        return resolve_budget_config(
            self.config,
            tenant_id=tenant_id,
            runtime_config=tenant_config,
            multi_tenancy=self.multi_tenancy,
            resolver=self.tenant_resolver,
        )

    # --- keys ---

    def _date_part(self, period: str) -> str:
        now = self._clock()
        if period == "daily":
            return now.strftime("%Y-%m-%d")
        if period == "monthly":
            return now.strftime("%Y-%m")
        raise ValueError(f"Unknown period: {period}")

    def spend_key(
        self,
        scope: str,
        period: str,
        agent_type: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> str:
        tenant_part = tenant_key_part(tenant_id)
        date_part = self._date_part(period)
        if scope == "global":
            return f"budget:{tenant_part}:{date_part}"
        if scope == "agent":
            if not agent_type:
                raise ValueError("agent_type is required for agent scope")
            return f"budget:{tenant_part}:agent:{agent_type}:{date_part}"
        raise ValueError(f"Unknown scope: {scope}")

    def token_key(self, period: str, tenant_id: Optional[str] = None) -> str:
        return f"tokens:{tenant_key_part(tenant_id)}:{self._date_part(period)}"

    def _alert_key(self, alert_type: str, scope: str, tenant_id: Optional[str]) -> str:
        return f"{alert_type}:{tenant_key_part(tenant_id)}:{scope}:{self._date_part('daily')}"

    @staticmethod
    def _ttl(period: str) -> int:
        return DAILY_TTL_SECONDS if period == "daily" else MONTHLY_TTL_SECONDS

    # --- recording ---

    def record_spend(
        self,
        agent_type: str,
        amount: Optional[float],
        tenant_id: Optional[str] = None,
        tenant_config: Optional[dict] = None,
    ) -> None:
        """Add spend to the four counters. No-op for None, zero or negative amounts."""
        if amount is None or amount <= 0:
            return

        tenant = self.resolve_tenant(tenant_id)
        for scope in SCOPES:
            for period in PERIODS:
                key = self.spend_key(scope, period, agent_type=agent_type, tenant_id=tenant)
                self.store.incr(key, amount, ttl=self._ttl(period))

        logger.debug("spend_recorded", agent_type=agent_type, amount=amount, tenant_id=tenant)

        config = self.resolve_config(tenant, tenant_config)
        if config.enabled:
            self._check_spend_alerts(agent_type, tenant, config)

    def record_tokens(
        self,
        agent_type: str,
        tokens: Optional[int],
        tenant_id: Optional[str] = None,
        tenant_config: Optional[dict] = None,
    ) -> None:
        """Add tokens to the global daily and monthly token counters."""
        if tokens is None or tokens <= 0:
            return

        tenant = self.resolve_tenant(tenant_id)
        for period in PERIODS:
            self.store.incr(self.token_key(period, tenant), tokens, ttl=self._ttl(period))

        logger.debug("tokens_recorded", agent_type=agent_type, tokens=tokens, tenant_id=tenant)

        config = self.resolve_config(tenant, tenant_config)
        if config.enabled:
            self._check_token_alerts(agent_type, tenant, config)

    # --- queries ---

    def _read_spend(self, scope: str, period: str, agent_type: Optional[str], tenant: Optional[str]) -> float:
        raw = self.store.get(self.spend_key(scope, period, agent_type=agent_type, tenant_id=tenant))
        return float(raw) if raw is not None else 0.0

    def _read_tokens(self, period: str, tenant: Optional[str]) -> int:
        raw = self.store.get(self.token_key(period, tenant))
        return int(float(raw)) if raw is not None else 0

    def current_spend(
        self,
        scope: str,
        period: str,
        agent_type: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> float:
        """Current spend in USD; 0.0 when nothing has been recorded."""
        return self._read_spend(scope, period, agent_type, self.resolve_tenant(tenant_id))

    def current_tokens(self, period: str, tenant_id: Optional[str] = None) -> int:
        return self._read_tokens(period, self.resolve_tenant(tenant_id))

    def remaining_budget(
        self,
        scope: str,
        period: str,
        agent_type: Optional[str] = None,
        tenant_id: Optional[str] = None,
        tenant_config: Optional[dict] = None,
    ) -> Optional[float]:
        """limit - current floored at 0, or None when no limit is configured."""
        tenant = self.resolve_tenant(tenant_id)
        config = self.resolve_config(tenant, tenant_config)
        limit = config.limit_for(scope, period, agent_type)
        if limit is None:
            return None
        return max(limit - self._read_spend(scope, period, agent_type, tenant), 0.0)

    def remaining_token_budget(
        self,
        period: str,
        tenant_id: Optional[str] = None,
        tenant_config: Optional[dict] = None,
    ) -> Optional[int]:
        tenant = self.resolve_tenant(tenant_id)
        limit = self.resolve_config(tenant, tenant_config).token_limit_for(period)
        if limit is None:
            return None
        return max(limit - self._read_tokens(period, tenant), 0)

    # --- enforcement ---

    def _spend_limits(self, config: BudgetConfig, agent_type: str, tenant: Optional[str]):
        """(scope name, limit, current) in evaluation order; only configured limits."""
        checks = [
            ("global_daily", config.global_daily, "global", "daily"),
            ("global_monthly", config.global_monthly, "global", "monthly"),
            ("per_agent_daily", config.per_agent_daily.get(agent_type), "agent", "daily"),
            ("per_agent_monthly", config.per_agent_monthly.get(agent_type), "agent", "monthly"),
        ]
        for name, limit, scope, period in checks:
            if limit is None:
                continue
            yield name, limit, self._read_spend(scope, period, agent_type, tenant)

    def _token_limits(self, config: BudgetConfig, tenant: Optional[str]):
        checks = [
            ("global_daily_tokens", config.global_daily_tokens, "daily"),
            ("global_monthly_tokens", config.global_monthly_tokens, "monthly"),
        ]
        for name, limit, period in checks:
            if limit is None:
                continue
            yield name, limit, self._read_tokens(period, tenant)

    def check_budget(
        self,
        agent_type: str,
        tenant_id: Optional[str] = None,
        tenant_config: Optional[dict] = None,
    ) -> BudgetCheck:
        """Check spend against every configured limit, first breach wins.

        Order: global_daily, global_monthly, per_agent_daily, per_agent_monthly.
        A limit is breached when current >= limit.

        Raises:
            BudgetExceededError: On a breach under hard enforcement.
        """
        tenant = self.resolve_tenant(tenant_id)
        config = self.resolve_config(tenant, tenant_config)
        return self._evaluate(self._spend_limits(config, agent_type, tenant), config, agent_type, tenant)

    def check_token_budget(
        self,
        agent_type: str,
        tenant_id: Optional[str] = None,
        tenant_config: Optional[dict] = None,
    ) -> BudgetCheck:
        """Same as check_budget over the global token counters."""
        tenant = self.resolve_tenant(tenant_id)
        config = self.resolve_config(tenant, tenant_config)
        return self._evaluate(self._token_limits(config, tenant), config, agent_type, tenant)

    def _evaluate(self, limits, config: BudgetConfig, agent_type: str, tenant: Optional[str]) -> BudgetCheck:
        for scope, limit, current in limits:
            if current < limit:
                continue

            if config.enforcement == "hard":
                logger.warning(
                    "budget_exceeded",
                    scope=scope,
                    limit=limit,
                    current=current,
                    agent_type=agent_type,
                    tenant_id=tenant,
                )
                raise BudgetExceededError(scope, limit, current, agent_type=agent_type, tenant_id=tenant)

            return BudgetCheck(
                exceeded=True,
                scope=scope,
                limit=limit,
                current=current,
                enforcement=config.enforcement,
                agent_type=agent_type,
                tenant_id=tenant,
            )

        return BudgetCheck(enforcement=config.enforcement, agent_type=agent_type, tenant_id=tenant)

    # --- cap alerts ---

    def _check_spend_alerts(self, agent_type: str, tenant: Optional[str], config: BudgetConfig) -> None:
        event = "budget_hard_cap" if config.enforcement == "hard" else "budget_soft_cap"
        if self.alerts is None or not self.alerts.config.wants(event):
            return
        for scope, limit, current in self._spend_limits(config, agent_type, tenant):
            if current > limit:
                self._alert_once(event, "budget_alert", scope, limit, round(current, 6), agent_type, tenant)

    def _check_token_alerts(self, agent_type: str, tenant: Optional[str], config: BudgetConfig) -> None:
        event = "token_hard_cap" if config.enforcement == "hard" else "token_soft_cap"
        if self.alerts is None or not self.alerts.config.wants(event):
            return
        for scope, limit, current in self._token_limits(config, tenant):
            if current > limit:
                self._alert_once(event, "token_alert", scope, limit, current, agent_type, tenant)

    def notify_breach(self, check: BudgetCheck) -> None:
        """Alert on a non-raising breach found by check_budget/check_token_budget.

        Shares the de-duplication markers used after recording spend.
        """
        if self.alerts is None or not check.exceeded or check.scope is None:
            return
        tokens = "tokens" in check.scope
        severity = "hard_cap" if check.enforcement == "hard" else "soft_cap"
        event = f"token_{severity}" if tokens else f"budget_{severity}"
        if not self.alerts.config.wants(event):
            return
        self._alert_once(
            event,
            "token_alert" if tokens else "budget_alert",
            check.scope,
            check.limit,
            check.current,
            check.agent_type,
            check.tenant_id,
        )

    def _alert_once(
        self,
        event: str,
        alert_type: str,
        scope: str,
        limit: float,
        current: float,
        agent_type: str,
        tenant: Optional[str],
    ) -> None:
        key = self._alert_key(alert_type, scope, tenant)
        if not self.store.set_if_absent(key, 1, ttl=ALERT_DEDUP_SECONDS):
            return
        self.alerts.notify(event, {
            "scope": scope,
            "limit": limit,
            "total": current,
            "agent_type": agent_type,
            "tenant_id": tenant,
            "timestamp": self._date_part("daily"),
        })

    # --- reporting ---

    def calculate_forecast(
        self,
        tenant_id: Optional[str] = None,
        tenant_config: Optional[dict] = None,
    ) -> Optional[dict[str, Any]]:
        """Project end-of-day and end-of-month spend from the current run rate.

        Returns None when budgets are disabled or no global limit is set.
        """
        tenant = self.resolve_tenant(tenant_id)
        config = self.resolve_config(tenant, tenant_config)
        if not config.enabled:
            return None
        if config.global_daily is None and config.global_monthly is None:
            return None

        now = self._clock()
        hours_elapsed = max(now.hour + now.minute / 60.0, 1.0)
        days_in_month = calendar.monthrange(now.year, now.month)[1]
        days_elapsed = max(now.day - 1 + hours_elapsed / 24.0, 1.0)

        forecast: dict[str, Any] = {}

        if config.global_daily is not None:
            current = self._read_spend("global", "daily", None, tenant)
            rate = current / hours_elapsed
            projected = rate * 24
            forecast["daily"] = {
                "current": round(current, 4),
                "projected": round(projected, 4),
                "limit": config.global_daily,
                "on_track": projected <= config.global_daily,
                "hours_remaining": round(24 - hours_elapsed, 1),
                "rate_per_hour": round(rate, 6),
            }

        if config.global_monthly is not None:
            current = self._read_spend("global", "monthly", None, tenant)
            rate = current / days_elapsed
            projected = rate * days_in_month
            forecast["monthly"] = {
                "current": round(current, 4),
                "projected": round(projected, 4),
                "limit": config.global_monthly,
                "on_track": projected <= config.global_monthly,
                "days_remaining": days_in_month - now.day,
                "rate_per_day": round(rate, 4),
            }

        return forecast

    @staticmethod
    def _budget_status(limit: float, current: float) -> dict[str, float]:
        return {
            "limit": limit,
            "current": round(current, 6),
            "remaining": round(max(limit - current, 0), 6),
            "percentage_used": round(current / limit * 100, 2) if limit else 100.0,
        }

    def status(
        self,
        agent_type: Optional[str] = None,
        tenant_id: Optional[str] = None,
        tenant_config: Optional[dict] = None,
    ) -> dict[str, Any]:
        """Every configured budget as {limit, current, remaining, percentage_used}."""
        tenant = self.resolve_tenant(tenant_id)
        config = self.resolve_config(tenant, tenant_config)

        result: dict[str, Any] = {
            "tenant_id": tenant,
            "enabled": config.enabled,
            "enforcement": config.enforcement,
        }

        spend_scopes = [
            ("global_daily", config.global_daily, "global", "daily"),
            ("global_monthly", config.global_monthly, "global", "monthly"),
        ]
        if agent_type:
            spend_scopes += [
                ("per_agent_daily", config.per_agent_daily.get(agent_type), "agent", "daily"),
                ("per_agent_monthly", config.per_agent_monthly.get(agent_type), "agent", "monthly"),
            ]
        for name, limit, scope, period in spend_scopes:
            if limit is not None:
                result[name] = self._budget_status(limit, self._read_spend(scope, period, agent_type, tenant))

        for name, limit, current in self._token_limits(config, tenant):
            token_status = self._budget_status(limit, current)
            token_status["current"] = current
            token_status["remaining"] = max(limit - current, 0)
            result[name] = token_status

        forecast = self.calculate_forecast(tenant, tenant_config)
        if forecast:
            result["forecast"] = forecast
        return result

    def reset(self, tenant_id: Optional[str] = None) -> int:
        """Clear spend, token and alert markers for one tenant space.

        Without a tenant this clears the untenanted ("global") space only.
        Returns the number of keys removed.
        """
        tenant_part = tenant_key_part(self.resolve_tenant(tenant_id))
        removed = 0
        for prefix in ("budget", "tokens", "budget_alert", "token_alert"):
            removed += self.store.delete_prefix(f"{prefix}:{tenant_part}:")
        logger.info("budget_reset", tenant=tenant_part, keys_removed=removed)
        return removed
