"""Observability: alerts, instrumentation events and attempt records.

Usage:
    from llm_shield.observability import AlertDispatcher, EventBus

    bus = EventBus()
    alerts = AlertDispatcher(bus=bus)
    alerts.notify("breaker_open", {"agent_type": "summarizer", "model_id": "gpt-4o"})
"""

from llm_shield.observability.instrumentation import EventBus
from llm_shield.observability.attempts import Attempt, AttemptTracker
from llm_shield.observability.alerts import (
    AlertDispatcher,
    CallbackSink,
    SlackSink,
    WebhookSink,
    format_message,
    format_slack_message,
)

__all__ = [
    "EventBus",
    "Attempt",
    "AttemptTracker",
    "AlertDispatcher",
    "CallbackSink",
    "SlackSink",
    "WebhookSink",
    "format_message",
    "format_slack_message",
]
