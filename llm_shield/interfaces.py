"""Protocols for the collaborators the pipeline consumes.

The pipeline never constructs provider requests, resolves tenants or
persists invocation history itself; it talks to these narrow interfaces.
"""

from typing import Any, Callable, Optional, Protocol, runtime_checkable

from llm_shield.models import CallResult, ModelPricing


@runtime_checkable
class ModelCaller(Protocol):
    """Performs the actual network call to a model.

    Raises ClassifiedError (or any exception) on failure. Implementations
    enforce their own per-call deadline.
    """

    def invoke(self, model_id: str, payload: Any) -> CallResult:
        ...


@runtime_checkable
class PricingResolver(Protocol):
    def price_per_million_tokens(self, model_id: str) -> Optional[ModelPricing]:
        ...


@runtime_checkable
class CacheStore(Protocol):
    """Response cache. get returns None on a miss."""

    def get(self, key: str) -> Optional[Any]:
        ...

    def put(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        ...


@runtime_checkable
class TenantResolver(Protocol):
    """Supplies the current tenant and optional per-tenant overrides."""

    def current_tenant_id(self) -> Optional[str]:
        ...

    def budget_config_for(self, tenant_id: str) -> Optional[dict]:
        ...

    def breaker_config_for(self, tenant_id: str) -> Optional[dict]:
        ...


@runtime_checkable
class InstrumentationBus(Protocol):
    """Fire-and-forget structured events."""

    def publish(self, name: str, payload: dict[str, Any]) -> None:
        ...


@runtime_checkable
class CounterStore(Protocol):
    """Key-value store with numeric increment and expiry, shared across processes.

    Every mutation used for cross-process state (incr, set_if_absent) must be
    atomic in the backing store.
    """

    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        ...

    def set_if_absent(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        ...

    def incr(self, key: str, amount: float = 1, ttl: Optional[int] = None) -> float:
        ...

    def delete(self, key: str) -> None:
        ...

    def delete_prefix(self, prefix: str) -> int:
        ...

    def ttl(self, key: str) -> Optional[int]:
        ...


AlertCallback = Callable[[str, dict[str, Any]], None]
