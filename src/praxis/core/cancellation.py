"""Cooperative cancellation handle owned by each run."""

import asyncio
import logging

logger = logging.getLogger(__name__)


class CancellationToken:
    """
    Flag plus the asyncio task running the run.

    ``cancel()`` marks the token and cancels the bound task, which aborts whatever LLM or tool call
    is currently awaited.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._task: asyncio.Task | None = None

    def bind(self, task: asyncio.Task) -> None:
        self._task = task

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self._task is not None and not self._task.done():
            logger.debug("Cancelling task %s", self._task.get_name())
            self._task.cancel()

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise asyncio.CancelledError()
