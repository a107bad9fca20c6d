"""Structured logging with structlog.

Provides:
- JSON-formatted log output for production
- Invocation context (tenant_id, agent_type, request_id) kept in
  contextvars, so threads and tasks never see each other's keys
- Factory function for creating loggers
"""

import logging
import sys
from typing import Mapping, Optional

import structlog
import structlog.contextvars
from structlog.types import EventDict, WrappedLogger

from llm_shield.config import LOG_JSON, LOG_LEVEL

SERVICE_NAME = "llm-shield"


def add_service_info(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Add service information to log entries."""
    event_dict["service"] = SERVICE_NAME
    return event_dict


def configure_structlog(
    json_format: bool = True,
    log_level: str = "INFO",
) -> None:
    """Configure structlog for the application.

    Args:
        json_format: If True, output JSON logs (for production).
                     If False, output human-readable logs (for development).
        log_level: The minimum log level to output (DEBUG, INFO, WARNING, ERROR).
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    shared_processors: list = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        add_service_info,
        structlog.contextvars.merge_contextvars,
    ]

    if json_format:
        renderers = [
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ]
    else:
        renderers = [
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=False),
        ]

    structlog.configure(
        processors=shared_processors + renderers,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger with the given name.

    Args:
        name: Logger name, typically __name__ of the calling module.

    Returns:
        A structlog BoundLogger instance.

    Example:
        logger = get_logger(__name__)
        logger.info("breaker_opened", agent_type="summarizer", model_id="gpt-4o")
    """
    return structlog.get_logger(name)


def bind_context(
    tenant_id: Optional[str] = None,
    agent_type: Optional[str] = None,
    request_id: Optional[str] = None,
) -> None:
    """Bind context variables for the current invocation.

    These values will be included in all subsequent log entries from the
    current thread or task until clear_context() is called.

    Args:
        tenant_id: Resolved tenant identifier, if any.
        agent_type: Agent type issuing the call.
        request_id: Caller-supplied correlation id.
    """
    values = {}
    if tenant_id:
        values["tenant_id"] = str(tenant_id)
    if agent_type:
        values["agent_type"] = agent_type
    if request_id:
        values["request_id"] = request_id
    structlog.contextvars.bind_contextvars(**values)


def clear_context() -> None:
    """Clear all bound context variables."""
    structlog.contextvars.clear_contextvars()


def with_context(**kwargs) -> Mapping:
    """Bind arbitrary extra context.

    Returns the tokens for the keys that were bound. Pass them to
    unbind_context() to restore whatever those keys held before.

    Example:
        bound = with_context(model_id="gpt-4o", attempt=2)
        # ... do work ...
        unbind_context(bound)
    """
    added = {}
    for key, value in kwargs.items():
        if value is not None:
            added[key] = value if isinstance(value, str) else str(value)
    return structlog.contextvars.bind_contextvars(**added)


def unbind_context(bound: Mapping) -> None:
    structlog.contextvars.reset_contextvars(**bound)


def current_context() -> dict[str, str]:
    return dict(structlog.contextvars.get_contextvars())


# Can be reconfigured by calling configure_structlog() at application start
configure_structlog(json_format=LOG_JSON, log_level=LOG_LEVEL)
