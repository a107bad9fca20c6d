"""Alert fan-out to webhooks, Slack and callbacks.

notify() never raises. Each sink is tried independently; a sink failure is
logged and the remaining sinks still run. Whatever the configuration, every
alert is also appended to a bounded recent-history list (newest first) and
published as alert.<kind> on the instrumentation bus.

Usage:
    alerts = AlertDispatcher(
        AlertConfig(slack_webhook_url="https://hooks.slack.com/services/..."),
        bus=EventBus(),
        sinks=[CallbackSink(lambda kind, payload: print(kind, payload))],
    )
    alerts.notify("breaker_open", {"agent_type": "summarizer", "model_id": "gpt-4o"})
    alerts.recent_alerts(limit=10)
"""

import json
import threading
from collections import deque
from enum import Enum
from typing import Any, Optional, Union

import httpx

from llm_shield.config import AlertConfig
from llm_shield.interfaces import AlertCallback, InstrumentationBus, TenantResolver
from llm_shield.logging.structured import get_logger
from llm_shield.models import AlertEvent, AlertKind
from llm_shield.observability.instrumentation import EventBus

logger = get_logger(__name__)

CONNECT_TIMEOUT_SECONDS = 5.0

SLACK_EMOJI = {
    "budget_soft_cap": ":warning:",
    "budget_hard_cap": ":no_entry:",
    "token_soft_cap": ":warning:",
    "token_hard_cap": ":no_entry:",
    "breaker_open": ":rotating_light:",
    "agent_anomaly": ":mag:",
}

SLACK_TITLES = {
    "budget_soft_cap": "Budget Soft Cap Reached",
    "budget_hard_cap": "Budget Hard Cap Exceeded",
    "token_soft_cap": "Token Soft Cap Reached",
    "token_hard_cap": "Token Hard Cap Exceeded",
    "breaker_open": "Circuit Breaker Opened",
    "agent_anomaly": "Agent Anomaly Detected",
}

ORANGE = "#FFA500"
RED = "#FF0000"
BLUE = "#0000FF"

SLACK_COLORS = {
    "budget_soft_cap": ORANGE,
    "budget_hard_cap": RED,
    "token_soft_cap": ORANGE,
    "token_hard_cap": RED,
    "breaker_open": RED,
    "agent_anomaly": ORANGE,
}


def _kind_name(kind: Union[str, AlertKind]) -> str:
    return kind.value if isinstance(kind, Enum) else str(kind)


def _money(value: Any) -> str:
    try:
        return f"{float(value):.2f}"
    except (TypeError, ValueError):
        return ""


def humanize(kind: str) -> str:
    """'custom_event_kind' -> 'Custom event kind'."""
    text = kind.replace("_", " ").replace(".", " ").strip()
    return text[:1].upper() + text[1:].lower()


def titleize(kind: str) -> str:
    return " ".join(word.capitalize() for word in kind.replace(".", "_").split("_") if word)


def format_message(kind: Union[str, AlertKind], payload: dict[str, Any]) -> str:
    """Human-readable one-liner for the recent-alert history."""
    kind = _kind_name(kind)
    total = payload.get("total", payload.get("total_cost", payload.get("current")))
    limit = payload.get("limit")

    if kind == "budget_soft_cap":
        return f"Budget soft cap reached: ${_money(total)} / ${_money(limit)}"
    if kind == "budget_hard_cap":
        return f"Budget hard cap exceeded: ${_money(total)} / ${_money(limit)}"
    if kind == "token_soft_cap":
        return f"Token soft cap reached: {total} / {limit}"
    if kind == "token_hard_cap":
        return f"Token hard cap exceeded: {total} / {limit}"
    if kind == "breaker_open":
        return f"Circuit breaker opened for {payload.get('agent_type')}"
    if kind == "breaker_closed":
        return f"Circuit breaker closed for {payload.get('agent_type')}"
    if kind == "agent_anomaly":
        return f"Anomaly detected: {payload.get('threshold_type')} threshold exceeded"
    return humanize(kind)


def format_slack_message(event: AlertEvent) -> dict[str, Any]:
    """Slack incoming-webhook body with one attachment and a field per payload key."""
    title = SLACK_TITLES.get(event.kind, titleize(event.kind))
    payload = {k: v for k, v in event.payload.items() if k != "event"}

    fields = [
        {"title": titleize(str(key)), "value": str(value), "short": True}
        for key, value in payload.items()
    ]

    return {
        "attachments": [
            {
                "fallback": f"{title}: {json.dumps(payload, default=str)}",
                "color": SLACK_COLORS.get(event.kind, BLUE),
                "pretext": f"{SLACK_EMOJI.get(event.kind, ':bell:')} *llm-shield alert*",
                "title": title,
                "text": event.message,
                "fields": fields,
                "footer": "llm-shield",
                "ts": int(event.timestamp.timestamp()),
            }
        ]
    }


def build_http_client(timeout_seconds: float) -> httpx.Client:
    return httpx.Client(timeout=httpx.Timeout(timeout_seconds, connect=CONNECT_TIMEOUT_SECONDS))


class WebhookSink:
    """POSTs the alert as JSON to a generic webhook."""

    name = "webhook"

    def __init__(self, url: str, client: Optional[httpx.Client] = None, timeout_seconds: float = 10.0):
        self.url = url
        self.client = client or build_http_client(timeout_seconds)

    def body(self, event: AlertEvent) -> dict[str, Any]:
        data = event.model_dump(mode="json")
        return {**data["payload"], "event": data["kind"], "message": data["message"],
                "timestamp": data["timestamp"], "tenant_id": data["tenant_id"]}

    def send(self, event: AlertEvent) -> None:
        response = self.client.post(self.url, json=self.body(event))
        if not response.is_success:
            logger.warning(
                "alert_webhook_rejected",
                sink=self.name,
                status_code=response.status_code,
                body=response.text[:500],
            )


class SlackSink(WebhookSink):
    """POSTs a Slack attachment to an incoming webhook."""

    name = "slack"

    def body(self, event: AlertEvent) -> dict[str, Any]:
        return json.loads(json.dumps(format_slack_message(event), default=str))


class CallbackSink:
    """Calls fn(kind, payload) in process."""

    name = "callback"

    def __init__(self, fn: AlertCallback):
        self.fn = fn

    def send(self, event: AlertEvent) -> None:
        self.fn(event.kind, {**event.payload, "event": event.kind,
                             "timestamp": event.timestamp, "tenant_id": event.tenant_id})


class AlertDispatcher:
    """Fan out alerts to sinks; keep a recent history; never raise.

    Attributes:
        config: AlertConfig controlling delivery and history size
        bus: Instrumentation bus receiving alert.<kind> for every alert
        sinks: Delivery targets tried in order
    """

    def __init__(
        self,
        config: Optional[AlertConfig] = None,
        bus: Optional[InstrumentationBus] = None,
        sinks: Optional[list] = None,
        http_client: Optional[httpx.Client] = None,
        tenant_resolver: Optional[TenantResolver] = None,
    ):
        self.config = config or AlertConfig()
        self.bus = bus if bus is not None else EventBus()
        self.tenant_resolver = tenant_resolver
        self.sinks: list = list(sinks or [])

        if self.config.webhook_url or self.config.slack_webhook_url:
            client = http_client or build_http_client(self.config.timeout_seconds)
            if self.config.slack_webhook_url:
                self.sinks.append(SlackSink(self.config.slack_webhook_url, client))
            if self.config.webhook_url:
                self.sinks.append(WebhookSink(self.config.webhook_url, client))

        self._history: deque[dict[str, Any]] = deque(maxlen=self.config.history_size)
        self._lock = threading.Lock()

    def add_sink(self, sink) -> None:
        self.sinks.append(sink)

    def notify(self, kind: Union[str, AlertKind], payload: Optional[dict[str, Any]] = None) -> Optional[AlertEvent]:
        """Dispatch one alert. Returns the built event, or None if it could not be built."""
        try:
            event = self._build_event(_kind_name(kind), dict(payload or {}))
        except Exception as e:
            logger.error("alert_build_failed", kind=_kind_name(kind), error=str(e))
            return None

        if self.config.wants(event.kind):
            for sink in self.sinks:
                self._deliver(sink, event)

        self._emit(event)
        self._remember(event)
        logger.info("alert_dispatched", kind=event.kind, message=event.message, tenant_id=event.tenant_id)
        return event

    def recent_alerts(self, limit: int = 50) -> list[dict[str, Any]]:
        """Newest first."""
        with self._lock:
            return list(self._history)[:limit]

    def clear_history(self) -> None:
        with self._lock:
            self._history.clear()

    def _build_event(self, kind: str, payload: dict[str, Any]) -> AlertEvent:
        tenant_id = payload.get("tenant_id")
        if tenant_id is None and self.tenant_resolver is not None:
            try:
                tenant_id = self.tenant_resolver.current_tenant_id()
            except Exception as e:
                logger.warning("alert_tenant_lookup_failed", error=str(e))

        return AlertEvent(
            kind=kind,
            payload=payload,
            tenant_id=str(tenant_id) if tenant_id is not None else None,
            message=format_message(kind, payload),
        )

    def _deliver(self, sink, event: AlertEvent) -> None:
        try:
            sink.send(event)
        except httpx.TimeoutException:
            logger.warning("alert_sink_failed", sink=getattr(sink, "name", type(sink).__name__),
                           kind=event.kind, error="Request timed out")
        except Exception as e:
            logger.warning("alert_sink_failed", sink=getattr(sink, "name", type(sink).__name__),
                           kind=event.kind, error=str(e))

    def _emit(self, event: AlertEvent) -> None:
        try:
            self.bus.publish(f"alert.{event.kind}", {
                **event.payload,
                "event": event.kind,
                "message": event.message,
                "tenant_id": event.tenant_id,
                "timestamp": event.timestamp.isoformat(),
            })
        except Exception as e:
            logger.warning("alert_instrumentation_failed", kind=event.kind, error=str(e))

    def _remember(self, event: AlertEvent) -> None:
        with self._lock:
            self._history.appendleft(event.to_history_entry())
