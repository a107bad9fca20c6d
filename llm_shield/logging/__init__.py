"""Structured logging for the reliability pipeline."""

from llm_shield.logging.structured import (
    configure_structlog,
    get_logger,
    bind_context,
    clear_context,
    with_context,
    unbind_context,
    current_context,
)

__all__ = [
    "configure_structlog",
    "get_logger",
    "bind_context",
    "clear_context",
    "with_context",
    "unbind_context",
    "current_context",
]
