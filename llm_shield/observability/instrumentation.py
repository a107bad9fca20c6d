"""In-process instrumentation bus.

Structured named events with a payload mapping. Every event is logged at
debug level through structlog and handed to any subscribers whose pattern
matches. Subscriber failures are logged and never reach the publisher.

Usage:
    bus = EventBus()
    bus.subscribe("alert.*", lambda name, payload: print(name, payload))
    bus.publish("alert.breaker_open", {"agent_type": "summarizer"})
"""

import fnmatch
import threading
from collections import deque
from typing import Any, Callable, Optional

from llm_shield.logging.structured import get_logger

logger = get_logger(__name__)

Subscriber = Callable[[str, dict[str, Any]], None]


class EventBus:
    """Fire-and-forget event bus.

    Attributes:
        namespace: Prefix added to every published name
        history: Most recent (name, payload) pairs, newest last
    """

    def __init__(self, namespace: str = "llm_shield", history_size: int = 200):
        self.namespace = namespace
        self.history: deque[tuple[str, dict[str, Any]]] = deque(maxlen=history_size)
        self._subscribers: list[tuple[str, Subscriber]] = []
        self._lock = threading.Lock()

    def subscribe(self, pattern: str, callback: Subscriber) -> None:
        """Register a callback for names matching a glob pattern (without namespace)."""
        with self._lock:
            self._subscribers.append((pattern, callback))

    def unsubscribe(self, callback: Subscriber) -> None:
        with self._lock:
            self._subscribers = [(p, cb) for p, cb in self._subscribers if cb is not callback]

    def publish(self, name: str, payload: dict[str, Any]) -> None:
        full_name = f"{self.namespace}.{name}" if self.namespace else name
        self.history.append((name, dict(payload)))
        logger.debug("instrumentation_event", event_name=full_name, **_loggable(payload))

        with self._lock:
            subscribers = [cb for pattern, cb in self._subscribers if fnmatch.fnmatchcase(name, pattern)]

        for callback in subscribers:
            try:
                callback(name, payload)
            except Exception as e:
                logger.warning("instrumentation_subscriber_failed", event_name=full_name, error=str(e))

    def events(self, pattern: Optional[str] = None) -> list[tuple[str, dict[str, Any]]]:
        """Recorded events, optionally filtered by a glob pattern."""
        if pattern is None:
            return list(self.history)
        return [(n, p) for n, p in self.history if fnmatch.fnmatchcase(n, pattern)]

    def names(self) -> list[str]:
        return [name for name, _ in self.history]


def _loggable(payload: dict[str, Any]) -> dict[str, Any]:
    # structlog reserves "event" for the message
    return {("payload_event" if k == "event" else k): v for k, v in payload.items()}
