"""
Human approval gate for risky tool calls.

A run that reaches the execute boundary with a gated tool parks an :class:`ApprovalRequest` here and
awaits a future.  The decision arrives out of band (API endpoint or CLI prompt) through
:meth:`ApprovalGate.resolve`.
"""

import asyncio
import logging
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Tuple,
)

from praxis.common import maybe_await
from praxis.core.schema import (
    ApprovalDecision,
    ApprovalDecisionKind,
    ApprovalRequest,
    ApprovalRequested,
)

logger = logging.getLogger(__name__)


class ApprovalNotFoundError(KeyError):
    """Raised when resolving an approval id that is not pending."""


class ApprovalGate:
    """Registry of pending approval requests and their futures."""

    def __init__(self) -> None:
        self._pending: Dict[str, Tuple[ApprovalRequest, "asyncio.Future[ApprovalDecision]"]] = {}

    def pending(self, conversation_id: str | None = None) -> List[ApprovalRequest]:
        """Pending requests, optionally filtered by conversation."""
        return [
            request
            for request, _ in self._pending.values()
            if conversation_id is None or request.conversation_id == conversation_id
        ]

    async def request(
        self,
        request: ApprovalRequest,
        on_event: Callable[[ApprovalRequested], Any] | None = None,
    ) -> ApprovalDecision:
        """
        Park *request* and wait for its decision.

        Cancelling the awaiting task cancels the future and drops the request.
        """
        future: "asyncio.Future[ApprovalDecision]" = asyncio.get_running_loop().create_future()
        self._pending[request.approval_id] = (request, future)
        logger.info(
            "Approval requested for '%s' (approval_id=%s)", request.tool_name, request.approval_id
        )
        try:
            if on_event is not None:
                await maybe_await(on_event(ApprovalRequested(request=request)))
            decision = await future
        finally:
            self._pending.pop(request.approval_id, None)
        logger.info("Approval %s resolved: %s", request.approval_id, decision.decision.value)
        return decision

    def resolve(self, approval_id: str, decision: ApprovalDecision) -> ApprovalRequest:
        """
        Deliver *decision* to the waiting run.

        Raises
        ------
        ApprovalNotFoundError
            If *approval_id* is not pending (unknown or already resolved).
        ValueError
            If a ``modified`` decision carries no replacement parameters.
        """
        entry = self._pending.get(approval_id)
        if entry is None or entry[1].done():
            raise ApprovalNotFoundError(approval_id)
        if decision.decision == ApprovalDecisionKind.MODIFIED and decision.parameters is None:
            raise ValueError("A 'modified' decision requires replacement parameters")
        request, future = entry
        future.set_result(decision)
        return request
