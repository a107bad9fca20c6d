"""Tests for PipelineContext."""

from datetime import timedelta

from llm_shield.context import PipelineContext
from llm_shield.exceptions import ClassifiedError
from llm_shield.models import PipelineStatus


def make_context(**kwargs) -> PipelineContext:
    return PipelineContext(agent_type="summarizer", model="gpt-4o", **kwargs)


class TestPipelineContext:
    def test_initial_state(self):
        ctx = make_context()
        assert ctx.status == PipelineStatus.PENDING
        assert ctx.success is False
        assert ctx.total_cost is None
        assert ctx.duration_ms is None

    def test_metadata_access(self):
        ctx = make_context()
        ctx["trace_id"] = "abc"
        assert ctx["trace_id"] == "abc"
        assert ctx["missing"] is None
        assert ctx.metadata == {"trace_id": "abc"}

    def test_set_costs_keeps_total_consistent(self):
        ctx = make_context()
        ctx.set_costs(0.1234567, 0.7654321)
        assert ctx.input_cost == 0.123457
        assert ctx.output_cost == 0.765432
        assert ctx.total_cost == ctx.input_cost + ctx.output_cost

    def test_finish_with_error(self):
        ctx = make_context()
        ctx.start()
        ctx.finish(PipelineStatus.ERROR, ClassifiedError("rate limited", kind="rate_limit"))

        assert ctx.error_kind == "rate_limit"
        assert ctx.error_message == "rate limited"
        assert ctx.completed_at is not None

    def test_duration(self):
        ctx = make_context()
        ctx.start()
        ctx.completed_at = ctx.started_at + timedelta(milliseconds=250)
        assert ctx.duration_ms == 250

    def test_to_dict(self):
        ctx = make_context(tenant_id="acme")
        ctx.input_tokens = 10
        ctx.output_tokens = 5
        ctx.start()
        ctx.finish(PipelineStatus.SUCCESS)

        data = ctx.to_dict()

        assert data["status"] == "success"
        assert data["tenant_id"] == "acme"
        assert data["error_kind"] is None
        assert ctx.total_tokens == 15
