"""Tenant scoping for budgets and breakers.

The pipeline never decides who the tenant is. It consumes an id, either
passed explicitly or supplied by a TenantResolver, and uses it to scope
counter keys and to pick per-tenant limit overrides.

Budget config resolution order:
1. runtime tenant_config passed with the call
2. TenantResolver.budget_config_for(tenant_id)
3. the static BudgetConfig
"""

from typing import Optional

from llm_shield.config import BreakerConfig, BudgetConfig
from llm_shield.interfaces import TenantResolver
from llm_shield.logging.structured import get_logger

logger = get_logger(__name__)


def tenant_key_part(tenant_id: Optional[str]) -> str:
    """Key segment for a tenant; untenanted counters live under "global"."""
    return f"tenant:{tenant_id}" if tenant_id else "global"


def resolve_tenant_id(
    explicit_tenant_id: Optional[str],
    multi_tenancy: bool,
    resolver: Optional[TenantResolver] = None,
) -> Optional[str]:
    """Return the tenant id to scope by, or None when multi-tenancy is off."""
    if not multi_tenancy:
        return None
    if explicit_tenant_id:
        return str(explicit_tenant_id)
    if resolver is None:
        return None

    tenant_id = resolver.current_tenant_id()
    return str(tenant_id) if tenant_id else None


def resolve_budget_config(
    base: BudgetConfig,
    tenant_id: Optional[str] = None,
    runtime_config: Optional[dict] = None,
    multi_tenancy: bool = False,
    resolver: Optional[TenantResolver] = None,
) -> BudgetConfig:
    """Pick the effective budget config for one call.

    Resolver failures are logged and fall back to the static config.
    """
    if runtime_config:
        return BudgetConfig.from_mapping(runtime_config, base=base)

    if not tenant_id or not multi_tenancy or resolver is None:
        return base

    try:
        tenant_config = resolver.budget_config_for(tenant_id)
    except Exception as e:
        logger.warning("tenant_budget_lookup_failed", tenant_id=tenant_id, error=str(e))
        return base

    if tenant_config:
        return BudgetConfig.from_mapping(tenant_config, base=base)
    return base


def resolve_breaker_config(
    base: BreakerConfig,
    tenant_id: Optional[str] = None,
    multi_tenancy: bool = False,
    resolver: Optional[TenantResolver] = None,
) -> BreakerConfig:
    if not tenant_id or not multi_tenancy or resolver is None:
        return base

    try:
        tenant_config = resolver.breaker_config_for(tenant_id)
    except Exception as e:
        logger.warning("tenant_breaker_lookup_failed", tenant_id=tenant_id, error=str(e))
        return base

    if not tenant_config:
        return base
    return BreakerConfig.from_mapping({
        "errors": tenant_config.get("errors", base.errors_threshold),
        "within": tenant_config.get("within", base.window_seconds),
        "cooldown": tenant_config.get("cooldown", base.cooldown_seconds),
        **tenant_config,
    })


class StaticTenantResolver:
    """TenantResolver backed by in-process dicts.

    Attributes:
        tenant_id: Id returned by current_tenant_id(); set per request
        budgets: tenant id -> budget override mapping
        breakers: tenant id -> breaker override mapping
    """

    def __init__(
        self,
        tenant_id: Optional[str] = None,
        budgets: Optional[dict[str, dict]] = None,
        breakers: Optional[dict[str, dict]] = None,
    ):
        self.tenant_id = tenant_id
        self.budgets = budgets or {}
        self.breakers = breakers or {}

    def current_tenant_id(self) -> Optional[str]:
        return self.tenant_id

    def budget_config_for(self, tenant_id: str) -> Optional[dict]:
        return self.budgets.get(tenant_id)

    def breaker_config_for(self, tenant_id: str) -> Optional[dict]:
        return self.breakers.get(tenant_id)
