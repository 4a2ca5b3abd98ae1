"""Dispatches tool calls registered in a ``praxis.tools.ToolRegistry`` and classifies failures."""

import asyncio
import logging
import time
from typing import (
    Any,
    Callable,
    List,
    Sequence,
    Tuple,
)

import httpx
from pydantic import ValidationError

from praxis.common import maybe_await
from praxis.config import settings
from praxis.core.cache import ToolResultCache
from praxis.core.schema import (
    ApprovalDecisionKind,
    ToolActivity,
    ToolCall,
    ToolResult,
)
from praxis.tools import (
    ToolExecutionContext,
    ToolRegistry,
)

logger = logging.getLogger(__name__)

ActivityCallback = Callable[[ToolActivity], Any]

_MAX_RETRY_DELAY = 10.0
_EXECUTED = (None, ApprovalDecisionKind.APPROVED, ApprovalDecisionKind.MODIFIED)


class ToolExecutionError(RuntimeError):
    """Raised by tools for failures they can classify themselves."""

    def __init__(self, message: str, category: str = "internal", retriable: bool = False):
        super().__init__(message)
        self.category = category
        self.retriable = retriable


def classify_exception(exc: BaseException) -> Tuple[str, bool]:
    """
    Map an exception raised by a tool to ``(category, retriable)``.

    Network errors, timeouts, HTTP 5xx and 429 are retriable; validation errors, other 4xx,
    permission problems and anything unrecognised are not.
    """
    if isinstance(exc, ToolExecutionError):
        return exc.category, exc.retriable
    if isinstance(exc, ValidationError):
        return "validation", False
    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
        return "timeout", True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        if status == 429:
            return "rate_limit", True
        if status >= 500:
            return "server_error", True
        if status in (401, 403):
            return "unauthorized", False
        if status == 404:
            return "not_found", False
        return "client_error", False
    if isinstance(exc, (httpx.TransportError, ConnectionError)):
        return "network", True
    if isinstance(exc, PermissionError):
        return "permission", False
    if isinstance(exc, FileNotFoundError):
        return "not_found", False
    return "internal", False


def batch_failed(results: Sequence[ToolResult]) -> bool:
    """
    True when every executed call failed and none of the failures is retriable.

    Results produced by an approval decision (skipped/denied) are not executions and never count.
    """
    executed = [r for r in results if r.metadata.approval in _EXECUTED]
    if not executed:
        return False
    return all(not r.success and not r.metadata.retriable for r in executed)


class ToolExecutor:
    """Runs tool calls with validation, timeout, retries and a read-through cache."""

    def __init__(
        self,
        registry: ToolRegistry,
        cache: ToolResultCache | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        retry_base_delay: float = 1.0,
    ):
        self.registry = registry
        self.cache = cache
        self.timeout = timeout or settings.TOOL_TIMEOUT_SECONDS
        self.max_retries = settings.TOOL_MAX_RETRIES if max_retries is None else max_retries
        self.retry_base_delay = retry_base_delay

    async def execute(
        self,
        call: ToolCall,
        context: ToolExecutionContext,
        on_activity: ActivityCallback | None = None,
    ) -> ToolResult:
        """
        Execute a single call; never raises for tool failures.

        Parameters
        ----------
        call:
            Tool name and raw parameters.
        context:
            Per-run context handed to the tool.
        on_activity:
            Optional (sync or async) callback receiving ``ToolActivity`` events.

        Returns
        -------
        ToolResult
            Success with data, or failure with a classified ``ToolError``.
        """
        tool = self.registry.get(call.tool)
        if tool is None:
            logger.warning("Unknown tool requested: %s", call.tool)
            return ToolResult.failure("validation", f"Unknown tool: {call.tool}", retriable=False)

        try:
            params = tool.validate(call.parameters).model_dump()
        except ValidationError as exc:
            # Validation errors are returned immediately, never retried
            return ToolResult.failure("validation", str(exc), retriable=False)

        cache = self.cache if tool.cacheable else None
        if cache is not None:
            hit = cache.get(call.tool, params)
            if hit is not None:
                logger.debug("Cache hit for '%s'", call.tool)
                await self._emit(
                    on_activity,
                    ToolActivity(tool_name=call.tool, status="completed", duration_ms=0),
                )
                return hit

        await self._emit(on_activity, ToolActivity(tool_name=call.tool, status="running"))
        start = time.perf_counter()
        attempt = 0
        while True:
            try:
                logger.debug("Executing tool '%s' with args=%s", call.tool, params)
                result = await asyncio.wait_for(tool.execute(params, context), self.timeout)
                break
            except Exception as exc:  # noqa: BLE001 - classified into the result
                category, retriable = classify_exception(exc)
                if retriable and attempt < self.max_retries:
                    delay = min(self.retry_base_delay * 2**attempt, _MAX_RETRY_DELAY)
                    attempt += 1
                    logger.warning(
                        "Tool '%s' failed (%s), retry %d/%d in %.1fs",
                        call.tool,
                        category,
                        attempt,
                        self.max_retries,
                        delay,
                    )
                    await asyncio.sleep(delay)
                    continue
                message = str(exc) or type(exc).__name__
                if category == "timeout" and isinstance(exc, asyncio.TimeoutError):
                    message = f"Tool execution timeout after {self.timeout:.1f}s"
                logger.warning("Tool '%s' failed [%s]: %s", call.tool, category, message)
                result = ToolResult.failure(category, message, retriable=retriable)
                break

        duration = time.perf_counter() - start
        result.metadata.duration = duration
        await self._emit(
            on_activity,
            ToolActivity(
                tool_name=call.tool,
                status="completed" if result.success else "failed",
                duration_ms=int(duration * 1000),
            ),
        )
        if cache is not None and result.success:
            cache.put(call.tool, params, result)
        return result

    async def execute_batch(
        self,
        calls: Sequence[ToolCall],
        context: ToolExecutionContext,
        on_activity: ActivityCallback | None = None,
    ) -> List[ToolResult]:
        """Run *calls* concurrently; results keep the order of *calls*."""
        return list(await asyncio.gather(*(self.execute(c, context, on_activity) for c in calls)))

    @staticmethod
    async def _emit(callback: ActivityCallback | None, event: ToolActivity) -> None:
        if callback is not None:
            await maybe_await(callback(event))
