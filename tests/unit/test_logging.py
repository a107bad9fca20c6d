"""Tests for structured logging helpers."""

import threading

import pytest
import structlog

from llm_shield.logging import (
    bind_context,
    clear_context,
    current_context,
    get_logger,
    unbind_context,
    with_context,
)
from llm_shield.logging.structured import add_service_info


@pytest.fixture(autouse=True)
def clean_context():
    clear_context()
    yield
    clear_context()


class TestContext:
    def test_bind_context(self):
        bind_context(tenant_id="acme", agent_type="summarizer", request_id="req-1")
        assert current_context() == {"tenant_id": "acme", "agent_type": "summarizer", "request_id": "req-1"}

    def test_bind_skips_empty_values(self):
        bind_context(agent_type="summarizer")
        assert current_context() == {"agent_type": "summarizer"}

    def test_with_context_binds_non_empty_values(self):
        bound = with_context(model_id="gpt-4o", attempt=2, tenant_id=None)
        assert set(bound) == {"model_id", "attempt"}
        assert current_context() == {"model_id": "gpt-4o", "attempt": "2"}

    def test_unbind_context(self):
        bind_context(request_id="req-1")
        bound = with_context(agent_type="summarizer")
        unbind_context(bound)
        assert current_context() == {"request_id": "req-1"}

    def test_nested_unbind_restores_outer_value(self):
        outer = with_context(agent_type="summarizer")
        inner = with_context(agent_type="classifier")
        assert current_context() == {"agent_type": "classifier"}

        unbind_context(inner)
        assert current_context() == {"agent_type": "summarizer"}

        unbind_context(outer)
        assert current_context() == {}

    def test_threads_do_not_share_context(self):
        with_context(agent_type="summarizer", tenant_id="acme")
        seen = {}

        def worker():
            seen["before"] = current_context()
            bound = with_context(agent_type="classifier")
            seen["during"] = current_context()
            unbind_context(bound)

        thread = threading.Thread(target=worker)
        thread.start()
        thread.join()

        assert seen["before"] == {}
        assert seen["during"] == {"agent_type": "classifier"}
        assert current_context() == {"agent_type": "summarizer", "tenant_id": "acme"}


class TestProcessors:
    def test_invocation_context_added(self):
        with_context(agent_type="summarizer")
        event = structlog.contextvars.merge_contextvars(None, "info", {"event": "breaker_opened"})
        assert event["agent_type"] == "summarizer"

    def test_explicit_fields_win(self):
        with_context(agent_type="summarizer")
        event = structlog.contextvars.merge_contextvars(None, "info", {"event": "x", "agent_type": "classifier"})
        assert event["agent_type"] == "classifier"

    def test_service_info(self):
        assert add_service_info(None, "info", {"event": "x"})["service"] == "llm-shield"


def test_get_logger_logs_without_error():
    logger = get_logger("llm_shield.test")
    logger.info("test_event", agent_type="summarizer")
