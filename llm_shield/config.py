"""Centralized configuration for the reliability pipeline.

Environment variables supply process-wide defaults. Every component takes an
explicit, immutable config object in its constructor; nothing reads these
module constants at call time.
"""

import os
from dataclasses import dataclass, field, replace
from typing import Any, Optional

# =============================================================================
# Shared counter store
# =============================================================================

# Redis holds budget counters and breaker state shared across processes
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")

# Every key written by this package starts with this prefix
KEY_NAMESPACE = os.environ.get("LLM_SHIELD_KEY_NAMESPACE", "llm_shield")

# =============================================================================
# Logging
# =============================================================================

LOG_LEVEL = os.environ.get("LLM_SHIELD_LOG_LEVEL", "INFO")
LOG_JSON = os.environ.get("LLM_SHIELD_LOG_JSON", "false").lower() == "true"

# =============================================================================
# Governance defaults
# =============================================================================

# "none", "soft" or "hard"
BUDGET_ENFORCEMENT = os.environ.get("LLM_SHIELD_BUDGET_ENFORCEMENT", "soft")

MULTI_TENANCY_ENABLED = (
    os.environ.get("LLM_SHIELD_MULTI_TENANCY", "false").lower() == "true"
)

ALERT_WEBHOOK_URL = os.environ.get("LLM_SHIELD_ALERT_WEBHOOK_URL")
ALERT_SLACK_WEBHOOK_URL = os.environ.get("LLM_SHIELD_ALERT_SLACK_WEBHOOK_URL")

ENFORCEMENT_LEVELS = ("none", "soft", "hard")

ALL_ALERT_EVENTS = (
    "budget_soft_cap",
    "budget_hard_cap",
    "token_soft_cap",
    "token_hard_cap",
    "breaker_open",
    "breaker_closed",
    "agent_anomaly",
)


def _optional_float(name: str) -> Optional[float]:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return None
    return float(raw)


BUDGET_GLOBAL_DAILY = _optional_float("LLM_SHIELD_BUDGET_GLOBAL_DAILY")
BUDGET_GLOBAL_MONTHLY = _optional_float("LLM_SHIELD_BUDGET_GLOBAL_MONTHLY")


@dataclass(frozen=True)
class BudgetConfig:
    """Spend and token limits.

    Attributes:
        enforcement: "none", "soft" or "hard". Only "hard" blocks calls.
        global_daily: Max USD per day across all agents
        global_monthly: Max USD per month across all agents
        per_agent_daily: Agent type -> max USD per day
        per_agent_monthly: Agent type -> max USD per month
        global_daily_tokens: Max tokens per day across all agents
        global_monthly_tokens: Max tokens per month across all agents
    """
    enforcement: str = "soft"
    global_daily: Optional[float] = None
    global_monthly: Optional[float] = None
    per_agent_daily: dict[str, float] = field(default_factory=dict)
    per_agent_monthly: dict[str, float] = field(default_factory=dict)
    global_daily_tokens: Optional[int] = None
    global_monthly_tokens: Optional[int] = None

    def __post_init__(self):
        if self.enforcement not in ENFORCEMENT_LEVELS:
            raise ValueError(
                f"enforcement must be one of {ENFORCEMENT_LEVELS}, got {self.enforcement!r}"
            )

    @property
    def enabled(self) -> bool:
        return self.enforcement != "none"

    @property
    def has_limits(self) -> bool:
        return any([
            self.global_daily,
            self.global_monthly,
            self.per_agent_daily,
            self.per_agent_monthly,
            self.global_daily_tokens,
            self.global_monthly_tokens,
        ])

    def limit_for(self, scope: str, period: str, agent_type: Optional[str] = None) -> Optional[float]:
        """Look up the configured USD limit for a scope/period pair."""
        if scope == "global":
            return self.global_daily if period == "daily" else self.global_monthly
        if scope == "agent":
            table = self.per_agent_daily if period == "daily" else self.per_agent_monthly
            return table.get(agent_type) if agent_type else None
        raise ValueError(f"Unknown scope: {scope}")

    def token_limit_for(self, period: str) -> Optional[int]:
        return self.global_daily_tokens if period == "daily" else self.global_monthly_tokens

    def with_overrides(self, **overrides: Any) -> "BudgetConfig":
        return replace(self, **overrides)

    @classmethod
    def from_mapping(cls, raw: dict, base: Optional["BudgetConfig"] = None) -> "BudgetConfig":
        """Build a config from a tenant/runtime override mapping.

        Keys follow the tenant record layout: enforcement, daily_budget_limit,
        monthly_budget_limit, per_agent_daily, per_agent_monthly,
        daily_token_limit, monthly_token_limit. Missing enforcement falls back
        to the base config.
        """
        base = base or cls()
        return cls(
            enforcement=raw.get("enforcement") or base.enforcement,
            global_daily=raw.get("daily_budget_limit"),
            global_monthly=raw.get("monthly_budget_limit"),
            per_agent_daily=dict(raw.get("per_agent_daily") or {}),
            per_agent_monthly=dict(raw.get("per_agent_monthly") or {}),
            global_daily_tokens=raw.get("daily_token_limit"),
            global_monthly_tokens=raw.get("monthly_token_limit"),
        )


@dataclass(frozen=True)
class BreakerConfig:
    """Circuit breaker thresholds.

    Attributes:
        errors_threshold: Failures within the window that open the breaker
        window_seconds: Rolling window for counting failures
        cooldown_seconds: How long the breaker stays open
    """
    errors_threshold: int = 10
    window_seconds: int = 60
    cooldown_seconds: int = 300

    def with_overrides(self, **overrides: Any) -> "BreakerConfig":
        return replace(self, **overrides)

    @classmethod
    def from_mapping(cls, raw: Optional[dict]) -> "BreakerConfig":
        """Accepts either field names or the short errors/within/cooldown keys."""
        raw = raw or {}
        return cls(
            errors_threshold=raw.get("errors_threshold", raw.get("errors", 10)),
            window_seconds=raw.get("window_seconds", raw.get("within", 60)),
            cooldown_seconds=raw.get("cooldown_seconds", raw.get("cooldown", 300)),
        )


@dataclass(frozen=True)
class AlertConfig:
    """Alert routing.

    Attributes:
        enabled: Deliver to sinks at all
        events: Event kinds to deliver; empty means every kind
        webhook_url: Generic JSON webhook
        slack_webhook_url: Slack incoming webhook
        timeout_seconds: HTTP timeout for webhook sinks
        history_size: Recent-alert ring capacity
    """
    enabled: bool = True
    events: tuple[str, ...] = ALL_ALERT_EVENTS
    webhook_url: Optional[str] = None
    slack_webhook_url: Optional[str] = None
    timeout_seconds: float = 10.0
    history_size: int = 50

    def wants(self, kind: str) -> bool:
        return self.enabled and (not self.events or kind in self.events)

    def with_overrides(self, **overrides: Any) -> "AlertConfig":
        return replace(self, **overrides)


@dataclass(frozen=True)
class CacheConfig:
    """Response caching; disabled when ttl_seconds is None."""
    ttl_seconds: Optional[int] = None
    version: str = "1.0"

    @property
    def enabled(self) -> bool:
        return bool(self.ttl_seconds)


# Default budget configurations
DEFAULT_BUDGET = BudgetConfig(
    enforcement="hard",
    global_daily=5.0,
    global_monthly=50.0,
)

GENEROUS_BUDGET = BudgetConfig(
    enforcement="soft",
    global_daily=50.0,
    global_monthly=500.0,
)

STRICT_BUDGET = BudgetConfig(
    enforcement="hard",
    global_daily=1.0,
    global_monthly=10.0,
)
