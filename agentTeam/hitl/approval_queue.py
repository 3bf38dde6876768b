"""Single-flight gate for tool approvals from parallel workers."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, List, Optional

from agentTeam.events import ApprovalEvent, EventBus, OrchestratorEventType
from agentTeam.hitl.models import ToolApprovalRequest, ToolApprovalResponse, ToolApprovalService

LOGGER = logging.getLogger(__name__)

PendingListener = Callable[[int], None]


class ApprovalQueue:
    """Serializes approval prompts so at most one is live at a time.

    Requests already covered by a remembered rule bypass the gate. Everything
    else waits its turn, and the cache is re-checked after the gate is taken
    because an earlier prompt may have produced a rule that covers it.
    """

    def __init__(self, approval_service: ToolApprovalService, events: Optional[EventBus] = None):
        self._service = approval_service
        self._events = events
        self._gate = asyncio.Lock()
        self._pending_count = 0
        self._listeners: List[PendingListener] = []

    @property
    def pending_count(self) -> int:
        return self._pending_count

    def add_pending_listener(self, listener: PendingListener) -> Callable[[], None]:
        """Call ``listener(pending_count)`` on every change; returns a remover."""
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    async def enqueue(self, request: ToolApprovalRequest) -> ToolApprovalResponse:
        if self._service.is_approved(request.session_id, request.tool_name, request.tool_args):
            LOGGER.debug(f"Approval fast path for {request.tool_name} (session {request.session_id})")
            return ToolApprovalResponse(approved=True, reason="Covered by existing approval rule")

        self._set_pending(self._pending_count + 1)
        try:
            async with self._gate:
                if self._service.is_approved(request.session_id, request.tool_name, request.tool_args):
                    return ToolApprovalResponse(approved=True, reason="Covered by approval granted while waiting")

                self._publish(OrchestratorEventType.APPROVAL_REQUESTED, request)
                response = await self._service.request_approval(request)
                self._publish(OrchestratorEventType.APPROVAL_RESOLVED, request, response.approved)
                return response
        finally:
            self._set_pending(self._pending_count - 1)

    def _set_pending(self, value: int) -> None:
        self._pending_count = value
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception as e:
                LOGGER.warning(f"Pending-count listener failed: {e}")

    def _publish(self, event_type: OrchestratorEventType, request: ToolApprovalRequest, approved: Optional[bool] = None) -> None:
        if self._events is None:
            return
        verb = "requested" if approved is None else ("approved" if approved else "denied")
        self._events.publish(ApprovalEvent(
            event_type=event_type,
            message=f"Tool '{request.tool_name}' {verb}",
            tool_name=request.tool_name,
            session_id=request.session_id,
            approved=approved,
            pending_count=self._pending_count,
        ))
