"""
Tests for the tool executor: validation, classification, timeouts, retries and caching.

Run with:
$ pytest -q
"""

import asyncio
from pathlib import Path
from typing import (
    ClassVar,
    List,
)

import httpx
import pytest
from fakes import (
    CountingTool,
    NoParams,
)

from praxis.core.cache import ToolResultCache
from praxis.core.schema import (
    ApprovalDecisionKind,
    ToolActivity,
    ToolCall,
    ToolResult,
)
from praxis.core.tool_executor import (
    ToolExecutionError,
    ToolExecutor,
    batch_failed,
    classify_exception,
)
from praxis.tools import (
    Tool,
    ToolExecutionContext,
    ToolRegistry,
)
from praxis.tools.builtin import EchoTool
from praxis.tools.files import WriteFileTool


class SleepyTool(Tool):
    name: ClassVar[str] = "sleepy"
    description: ClassVar[str] = "Sleeps for a second"
    params_model = NoParams

    async def run(self, params: NoParams, context: ToolExecutionContext) -> str:
        await asyncio.sleep(1)
        return "woke up"


def _registry(*tools: Tool) -> ToolRegistry:
    registry = ToolRegistry(approval_overrides={})
    for tool in tools:
        registry.register(tool)
    return registry


def _status_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://example.com")
    return httpx.HTTPStatusError(
        f"HTTP {status}", request=request, response=httpx.Response(status, request=request)
    )


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------
@pytest.mark.parametrize(
    "exc, expected",
    [
        (_status_error(503), ("server_error", True)),
        (_status_error(500), ("server_error", True)),
        (_status_error(429), ("rate_limit", True)),
        (_status_error(401), ("unauthorized", False)),
        (_status_error(403), ("unauthorized", False)),
        (_status_error(404), ("not_found", False)),
        (_status_error(400), ("client_error", False)),
        (httpx.ConnectError("refused"), ("network", True)),
        (httpx.ReadTimeout("slow"), ("timeout", True)),
        (asyncio.TimeoutError(), ("timeout", True)),
        (ConnectionResetError(), ("network", True)),
        (PermissionError("nope"), ("permission", False)),
        (FileNotFoundError("gone"), ("not_found", False)),
        (ToolExecutionError("quota", category="quota", retriable=True), ("quota", True)),
        (RuntimeError("bug"), ("internal", False)),
    ],
)
def test_classify_exception(exc: BaseException, expected: tuple) -> None:
    assert classify_exception(exc) == expected


def test_batch_failed() -> None:
    """Only executed calls count; approval outcomes never make a batch fail."""
    ok = ToolResult.ok("fine")
    hard = ToolResult.failure("client_error", "bad request")
    soft = ToolResult.failure("network", "reset", retriable=True)
    denied = ToolResult.failure("denied", "no")
    denied.metadata.approval = ApprovalDecisionKind.DENIED

    assert batch_failed([hard])
    assert batch_failed([hard, hard])
    assert not batch_failed([hard, ok])
    assert not batch_failed([soft])
    assert not batch_failed([denied])
    assert batch_failed([denied, hard])
    assert not batch_failed([])


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_execute_tool_success() -> None:
    """Executor should return the tool's value and report activity."""
    executor = ToolExecutor(_registry(EchoTool()))
    events: List[ToolActivity] = []

    result = await executor.execute(
        ToolCall(tool="echo", parameters={"text": "hi"}), ToolExecutionContext(), events.append
    )

    assert result.success
    assert result.data == "hi"
    assert result.metadata.duration >= 0
    assert [e.status for e in events] == ["running", "completed"]
    assert events[-1].duration_ms is not None


@pytest.mark.asyncio
async def test_execute_tool_missing() -> None:
    """An unknown tool is a validation failure, not an exception."""
    executor = ToolExecutor(_registry(EchoTool()))

    result = await executor.execute(ToolCall(tool="not_a_tool"), ToolExecutionContext())

    assert not result.success
    assert result.error is not None
    assert result.error.category == "validation"
    assert "not_a_tool" in result.error.message


@pytest.mark.asyncio
async def test_execute_tool_bad_args_is_not_retried() -> None:
    executor = ToolExecutor(_registry(EchoTool()), max_retries=3, retry_base_delay=0)

    result = await executor.execute(
        ToolCall(tool="echo", parameters={"wrong": 1}), ToolExecutionContext()
    )

    assert result.error is not None
    assert result.error.category == "validation"
    assert result.error.retriable is False


@pytest.mark.asyncio
async def test_execute_timeout() -> None:
    executor = ToolExecutor(_registry(SleepyTool()), timeout=0.05)
    events: List[ToolActivity] = []

    result = await executor.execute(ToolCall(tool="sleepy"), ToolExecutionContext(), events.append)

    assert result.error is not None
    assert result.error.category == "timeout"
    assert result.error.retriable is True
    assert "timeout" in result.error.message
    assert events[-1].status == "failed"


@pytest.mark.asyncio
async def test_retriable_errors_are_retried() -> None:
    tool = CountingTool(errors=[httpx.ConnectError("refused"), _status_error(503)])
    executor = ToolExecutor(_registry(tool), max_retries=2, retry_base_delay=0)

    result = await executor.execute(ToolCall(tool="count"), ToolExecutionContext())

    assert result.success
    assert result.data == 3
    assert tool.calls == 3


@pytest.mark.asyncio
async def test_retries_are_bounded() -> None:
    tool = CountingTool(errors=[_status_error(503)] * 5)
    executor = ToolExecutor(_registry(tool), max_retries=1, retry_base_delay=0)

    result = await executor.execute(ToolCall(tool="count"), ToolExecutionContext())

    assert tool.calls == 2
    assert result.error is not None
    assert result.error.category == "server_error"
    assert result.metadata.retriable is True


@pytest.mark.asyncio
async def test_non_retriable_error_is_not_retried() -> None:
    tool = CountingTool(errors=[_status_error(404)])
    executor = ToolExecutor(_registry(tool), max_retries=3, retry_base_delay=0)

    result = await executor.execute(ToolCall(tool="count"), ToolExecutionContext())

    assert tool.calls == 1
    assert result.error is not None
    assert result.error.category == "not_found"


# ---------------------------------------------------------------------------
# Caching
# ---------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_cached_result_is_reused() -> None:
    tool = CountingTool()
    executor = ToolExecutor(_registry(tool), cache=ToolResultCache())
    events: List[ToolActivity] = []

    first = await executor.execute(ToolCall(tool="count"), ToolExecutionContext())
    second = await executor.execute(ToolCall(tool="count"), ToolExecutionContext(), events.append)

    assert tool.calls == 1
    assert first.data == second.data == 1
    assert first.metadata.cached is False
    assert second.metadata.cached is True
    assert [(e.status, e.duration_ms) for e in events] == [("completed", 0)]


@pytest.mark.asyncio
async def test_failures_are_not_cached() -> None:
    tool = CountingTool(errors=[RuntimeError("boom")])
    executor = ToolExecutor(_registry(tool), cache=ToolResultCache())

    first = await executor.execute(ToolCall(tool="count"), ToolExecutionContext())
    second = await executor.execute(ToolCall(tool="count"), ToolExecutionContext())

    assert not first.success
    assert second.success
    assert tool.calls == 2


@pytest.mark.asyncio
async def test_non_cacheable_tool_always_runs(workspace: Path) -> None:
    executor = ToolExecutor(_registry(WriteFileTool()), cache=ToolResultCache())
    call = ToolCall(tool="write_file", parameters={"path": "log.txt", "content": "x", "append": True})

    await executor.execute(call, ToolExecutionContext())
    second = await executor.execute(call, ToolExecutionContext())

    assert second.metadata.cached is False
    assert (workspace / "log.txt").read_text(encoding="utf-8") == "xx"


@pytest.mark.asyncio
async def test_execute_batch_keeps_order() -> None:
    executor = ToolExecutor(_registry(EchoTool()))
    calls = [ToolCall(tool="echo", parameters={"text": t}) for t in ("a", "b", "c")]

    results = await executor.execute_batch(calls, ToolExecutionContext())

    assert [r.data for r in results] == ["a", "b", "c"]
