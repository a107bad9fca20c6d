"""Top-level reliability pipeline.

PipelineExecutor.run threads one PipelineContext through:

    tenant -> budget check -> breaker check -> cache lookup
           -> retry/fallback call -> breaker bookkeeping
           -> cost + spend recording -> cache write

Budget and breaker rejections, and terminal call failures, settle the
context's status instead of raising. Pass raise_on_error=True to have the
terminal error re-raised once the context is fully populated.

Usage:
    config = PipelineConfig(
        retry=RetryPolicy(max_retries=2, fallback_models=("gpt-4o-mini",)),
        budget=BudgetConfig(enforcement="hard", global_daily=10.0),
    )
    executor = PipelineExecutor.build(config, caller, RedisCounterStore.from_url())

    ctx = executor.run(PipelineContext(agent_type="summarizer", model="gpt-4o", input=payload))
    print(ctx.status, ctx.model_used, ctx.total_cost)
"""

import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Optional

from llm_shield.cache import build_cache_key
from llm_shield.circuit_breaker import BreakerRegistry
from llm_shield.config import (
    ALERT_SLACK_WEBHOOK_URL,
    ALERT_WEBHOOK_URL,
    BUDGET_ENFORCEMENT,
    BUDGET_GLOBAL_DAILY,
    BUDGET_GLOBAL_MONTHLY,
    KEY_NAMESPACE,
    MULTI_TENANCY_ENABLED,
    AlertConfig,
    BreakerConfig,
    BudgetConfig,
    CacheConfig,
)
from llm_shield.context import PipelineContext
from llm_shield.exceptions import AllModelsExhaustedError, BreakerOpenError, BudgetExceededError
from llm_shield.interfaces import (
    CacheStore,
    CounterStore,
    InstrumentationBus,
    ModelCaller,
    PricingResolver,
    TenantResolver,
)
from llm_shield.logging.structured import get_logger, unbind_context, with_context
from llm_shield.metrics.costs import calculate_cost
from llm_shield.models import PipelineStatus, TokenUsage
from llm_shield.observability.alerts import AlertDispatcher
from llm_shield.observability.attempts import AttemptTracker
from llm_shield.observability.instrumentation import EventBus
from llm_shield.resilience.budget import BudgetCheck, BudgetTracker
from llm_shield.resilience.fallback import RetryFallbackController
from llm_shield.resilience.retry import DEFAULT_POLICY, RetryPolicy
from llm_shield.tenancy import resolve_tenant_id

logger = get_logger(__name__)


@dataclass(frozen=True)
class PipelineConfig:
    """Everything a pipeline needs, built once and passed in.

    Attributes:
        retry: Retry/fallback plan
        budget: Spend and token limits
        breaker: Breaker thresholds; None disables breakers
        alerts: Alert routing
        cache: Response caching
        multi_tenancy: Scope counters and breakers by tenant
        namespace: Prefix for every counter key
    """
    retry: RetryPolicy = DEFAULT_POLICY
    budget: BudgetConfig = field(default_factory=BudgetConfig)
    breaker: Optional[BreakerConfig] = field(default_factory=BreakerConfig)
    alerts: AlertConfig = field(default_factory=AlertConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    multi_tenancy: bool = False
    namespace: str = KEY_NAMESPACE

    def with_overrides(self, **overrides: Any) -> "PipelineConfig":
        """Compose a derived config, e.g. a per-agent variant of a shared base."""
        return replace(self, **overrides)

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        return cls(
            budget=BudgetConfig(
                enforcement=BUDGET_ENFORCEMENT,
                global_daily=BUDGET_GLOBAL_DAILY,
                global_monthly=BUDGET_GLOBAL_MONTHLY,
            ),
            alerts=AlertConfig(
                webhook_url=ALERT_WEBHOOK_URL,
                slack_webhook_url=ALERT_SLACK_WEBHOOK_URL,
            ),
            multi_tenancy=MULTI_TENANCY_ENABLED,
        )


class PipelineExecutor:
    """Runs the reliability pipeline for one context at a time.

    Collaborators are injected; budget and breakers are optional so a
    pipeline can run with only retry/fallback.
    """

    def __init__(
        self,
        config: PipelineConfig,
        caller: ModelCaller,
        budget: Optional[BudgetTracker] = None,
        breakers: Optional[BreakerRegistry] = None,
        alerts: Optional[AlertDispatcher] = None,
        pricing: Optional[PricingResolver] = None,
        cache: Optional[CacheStore] = None,
        tenant_resolver: Optional[TenantResolver] = None,
        bus: Optional[InstrumentationBus] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.caller = caller
        self.budget = budget
        self.breakers = breakers
        self.alerts = alerts
        self.pricing = pricing
        self.cache = cache
        self.tenant_resolver = tenant_resolver
        if bus is None:
            bus = alerts.bus if alerts is not None else EventBus()
        self.bus = bus
        self._sleep = sleep
        self._clock = clock

    @classmethod
    def build(
        cls,
        config: PipelineConfig,
        caller: ModelCaller,
        store: CounterStore,
        pricing: Optional[PricingResolver] = None,
        cache: Optional[CacheStore] = None,
        tenant_resolver: Optional[TenantResolver] = None,
        bus: Optional[InstrumentationBus] = None,
        sinks: Optional[list] = None,
        **kwargs: Any,
    ) -> "PipelineExecutor":
        """Wire the standard components around one shared counter store."""
        bus = bus if bus is not None else EventBus()
        alerts = AlertDispatcher(config.alerts, bus=bus, sinks=sinks, tenant_resolver=tenant_resolver)
        budget = BudgetTracker(
            store,
            config.budget,
            alerts=alerts,
            tenant_resolver=tenant_resolver,
            multi_tenancy=config.multi_tenancy,
        )
        breakers = None
        if config.breaker is not None:
            breakers = BreakerRegistry(
                store,
                config.breaker,
                alerts=alerts,
                tenant_resolver=tenant_resolver,
                multi_tenancy=config.multi_tenancy,
            )
        return cls(
            config,
            caller,
            budget=budget,
            breakers=breakers,
            alerts=alerts,
            pricing=pricing,
            cache=cache,
            tenant_resolver=tenant_resolver,
            bus=bus,
            **kwargs,
        )

    # --- entry point ---

    def run(self, context: PipelineContext, raise_on_error: bool = False) -> PipelineContext:
        """Run every stage against the context, mutating it in place.

        Args:
            context: The invocation to run
            raise_on_error: Re-raise the terminal error after populating context

        Returns:
            The same context

        Raises:
            Exception: Counter store failures during the budget or breaker
                checks always propagate; terminal call errors only when
                raise_on_error is set.
        """
        context.start()
        self._resolve_tenant(context)
        bound = with_context(agent_type=context.agent_type, tenant_id=context.tenant_id)

        self._publish("pipeline.start", {
            "agent_type": context.agent_type,
            "model": context.model,
            "tenant_id": context.tenant_id,
        })

        try:
            self._execute(context)
        except Exception as e:
            context.finish(PipelineStatus.ERROR, e)
            self._publish_outcome(context)
            raise
        finally:
            unbind_context(bound)

        self._publish_outcome(context)

        if raise_on_error and context.error is not None:
            raise context.error
        return context

    # --- stages ---

    def _execute(self, ctx: PipelineContext) -> None:
        if not self._check_budget(ctx):
            return
        if not self._check_breaker(ctx):
            return

        cache_key = self._cache_key(ctx)
        if cache_key is not None and self._read_cache(ctx, cache_key):
            return

        tracker = AttemptTracker(bus=self.bus, clock=self._clock)
        controller = RetryFallbackController(
            self.config.retry,
            self.caller,
            sleep=self._sleep,
            clock=self._clock,
            breaker_for=self._breaker_lookup(ctx),
            bus=self.bus,
        )

        try:
            result = controller.execute(ctx.model, ctx.input, tracker=tracker)
        except Exception as e:
            self._apply_attempts(ctx, tracker)
            self._record_breaker_outcomes(ctx, tracker, model_used=None)
            self._fail_call(ctx, e)
            return

        self._apply_attempts(ctx, tracker)
        ctx.model_used = result.model_used
        ctx.output = result.output
        ctx.input_tokens = result.usage.input_tokens
        ctx.output_tokens = result.usage.output_tokens
        ctx.time_to_first_token_ms = result.time_to_first_token_ms

        self._record_breaker_outcomes(ctx, tracker, model_used=result.model_used)
        self._record_cost(ctx, result.usage)

        if cache_key is not None:
            self._write_cache(cache_key, result.output)

        ctx.finish(PipelineStatus.SUCCESS)

    def _resolve_tenant(self, ctx: PipelineContext) -> None:
        ctx.tenant_id = resolve_tenant_id(ctx.tenant_id, self.config.multi_tenancy, self.tenant_resolver)

    def _check_budget(self, ctx: PipelineContext) -> bool:
        """False when the call must not proceed."""
        if self.budget is None:
            return True

        try:
            checks = [
                self.budget.check_budget(ctx.agent_type, ctx.tenant_id, ctx.tenant_config),
                self.budget.check_token_budget(ctx.agent_type, ctx.tenant_id, ctx.tenant_config),
            ]
        except BudgetExceededError as e:
            logger.warning("budget_rejected", agent_type=ctx.agent_type, scope=e.scope, tenant_id=ctx.tenant_id)
            ctx.finish(PipelineStatus.BUDGET_REJECTED, e)
            return False

        for check in checks:
            if check.soft_breach:
                self._soft_breach(ctx, check)
        return True

    def _soft_breach(self, ctx: PipelineContext, check: BudgetCheck) -> None:
        logger.warning(
            "budget_soft_cap_reached",
            agent_type=ctx.agent_type,
            scope=check.scope,
            limit=check.limit,
            current=check.current,
            tenant_id=ctx.tenant_id,
        )
        ctx["budget_warning"] = check.to_dict()
        self.budget.notify_breach(check)

    def _check_breaker(self, ctx: PipelineContext) -> bool:
        """False when the primary is open and no fallback is closed."""
        if self.breakers is None:
            return True

        primary = self.breakers.get(ctx.agent_type, ctx.model, ctx.tenant_id)
        if not primary.is_open():
            return True

        fallbacks = self.config.retry.models_for(ctx.model)[1:]
        closed = [m for m in fallbacks if not self.breakers.is_open(ctx.agent_type, m, ctx.tenant_id)]
        if closed:
            logger.info("primary_breaker_open", agent_type=ctx.agent_type, model_id=ctx.model, next_model=closed[0])
            return True

        logger.warning("breaker_rejected", agent_type=ctx.agent_type, model_id=ctx.model, tenant_id=ctx.tenant_id)
        ctx.finish(
            PipelineStatus.BREAKER_OPEN,
            BreakerOpenError(ctx.agent_type, ctx.model, ctx.tenant_id, retry_in=primary.time_until_close()),
        )
        return False

    def _breaker_lookup(self, ctx: PipelineContext):
        if self.breakers is None:
            return None
        return lambda model: self.breakers.get(ctx.agent_type, model, ctx.tenant_id)

    def _fail_call(self, ctx: PipelineContext, error: Exception) -> None:
        if isinstance(error, AllModelsExhaustedError) and not error.models_tried:
            # Every model was skipped by an open breaker between our check and the call
            ctx.finish(PipelineStatus.BREAKER_OPEN, BreakerOpenError(ctx.agent_type, ctx.model, ctx.tenant_id))
            return

        if isinstance(error, AllModelsExhaustedError):
            ctx.model_used = error.error_model
        logger.warning(
            "pipeline_call_failed",
            agent_type=ctx.agent_type,
            model=ctx.model,
            error_type=type(error).__name__,
            error=str(error),
        )
        ctx.finish(PipelineStatus.ERROR, error)

    @staticmethod
    def _apply_attempts(ctx: PipelineContext, tracker: AttemptTracker) -> None:
        ctx.attempts = tracker.to_list()
        ctx.attempts_made = tracker.attempts_count

    def _record_breaker_outcomes(
        self,
        ctx: PipelineContext,
        tracker: AttemptTracker,
        model_used: Optional[str],
    ) -> None:
        if self.breakers is None:
            return
        try:
            for attempt in tracker.failed_attempts:
                self.breakers.get(ctx.agent_type, attempt.model_id, ctx.tenant_id).record_failure()
            if model_used is not None:
                self.breakers.get(ctx.agent_type, model_used, ctx.tenant_id).record_success()
        except Exception as e:
            logger.error("breaker_bookkeeping_failed", agent_type=ctx.agent_type, error=str(e))

    def _record_cost(self, ctx: PipelineContext, usage: TokenUsage) -> None:
        input_cost, output_cost = 0.0, 0.0
        if self.pricing is not None:
            try:
                pricing = self.pricing.price_per_million_tokens(ctx.model_used)
                input_cost, output_cost, _ = calculate_cost(usage, pricing)
            except Exception as e:
                # Malformed prices count as a failed lookup
                logger.warning("pricing_lookup_failed", model_id=ctx.model_used, error=str(e))
                input_cost, output_cost = 0.0, 0.0

        ctx.set_costs(input_cost, output_cost)

        if self.budget is None:
            return
        try:
            self.budget.record_spend(ctx.agent_type, ctx.total_cost, ctx.tenant_id, ctx.tenant_config)
            self.budget.record_tokens(ctx.agent_type, usage.total, ctx.tenant_id, ctx.tenant_config)
        except Exception as e:
            logger.error("spend_recording_failed", agent_type=ctx.agent_type, error=str(e))

    # --- cache ---

    def _cache_key(self, ctx: PipelineContext) -> Optional[str]:
        if self.cache is None or not self.config.cache.enabled:
            return None
        return build_cache_key(ctx.agent_type, ctx.model, ctx.input, version=self.config.cache.version)

    def _read_cache(self, ctx: PipelineContext, key: str) -> bool:
        try:
            cached = self.cache.get(key)
        except Exception as e:
            logger.error("cache_read_failed", key=key, error=str(e))
            return False
        if cached is None:
            return False

        logger.debug("cache_hit", key=key)
        ctx.output = cached
        ctx.cached = True
        ctx.model_used = ctx.model
        ctx.set_costs(0.0, 0.0)
        ctx.finish(PipelineStatus.SUCCESS)
        return True

    def _write_cache(self, key: str, value: Any) -> None:
        try:
            self.cache.put(key, value, ttl=self.config.cache.ttl_seconds)
        except Exception as e:
            logger.error("cache_write_failed", key=key, error=str(e))

    # --- instrumentation ---

    def _publish(self, name: str, payload: dict[str, Any]) -> None:
        try:
            self.bus.publish(name, payload)
        except Exception as e:
            logger.warning("instrumentation_failed", event_name=name, error=str(e))

    def _publish_outcome(self, ctx: PipelineContext) -> None:
        name = "pipeline.complete" if ctx.error is None else "pipeline.error"
        self._publish(name, ctx.to_dict())
