"""Tests for run tracing."""

import pytest

from praxis.core.schema import TokenUsage
from praxis.core.trace import Trace


def test_generation_records_output_and_usage() -> None:
    trace = Trace(run_id="r1", session_id="c1")

    with trace.generation("plan", "gpt-4o-mini", input="plan") as gen:
        gen.end({"thinking": "x"}, TokenUsage(prompt_tokens=3, completion_tokens=2, total_tokens=5))
    trace.end("answer")

    [record] = trace.records
    assert record.kind == "generation"
    assert record.model == "gpt-4o-mini"
    assert record.output == {"thinking": "x"}
    assert record.usage is not None
    assert record.usage.total_tokens == 5
    assert record.duration >= 0
    assert record.error is None
    assert trace.output == "answer"
    assert trace.ended_at is not None


def test_span_records_errors_and_reraises() -> None:
    trace = Trace(run_id="r1")

    with pytest.raises(RuntimeError):
        with trace.span("tool:echo", input={"text": "a"}):
            raise RuntimeError("boom")

    [record] = trace.records
    assert record.kind == "span"
    assert record.error == "RuntimeError: boom"


def test_summary_is_json_ready() -> None:
    trace = Trace(run_id="r1")
    with trace.span("attachments", input=["a.png"]):
        pass

    summary = trace.summary()

    assert summary["run_id"] == "r1"
    assert summary["records"][0]["input"] == ["a.png"]
