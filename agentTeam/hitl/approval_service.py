"""Interactive approval backend with remembered decisions."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from agentTeam.hitl.approval_checker import ApprovalChecker
from agentTeam.hitl.models import (
    ApprovalScope,
    ToolApprovalRequest,
    ToolApprovalResponse,
    ToolApprovalRule,
)

LOGGER = logging.getLogger(__name__)

PromptCallback = Callable[[ToolApprovalRequest], Awaitable[ToolApprovalResponse]]


class InteractiveApprovalService:
    """ToolApprovalService that asks a human through ``prompt_callback``.

    Calls are pre-approved when a remembered rule approves them, when the
    tool is read-only and auto-approval is on, or when the checker finds
    no risk. Session/global decisions flagged ``remember_decision`` are
    cached as rules.
    """

    def __init__(
        self,
        prompt_callback: PromptCallback,
        checker: Optional[ApprovalChecker] = None,
        auto_approve_read_only: bool = True,
    ):
        self._prompt_callback = prompt_callback
        self._checker = checker or ApprovalChecker()
        self._auto_approve_read_only = auto_approve_read_only
        self._rules: Dict[Tuple[Optional[str], str], ToolApprovalRule] = {}

    @property
    def rules(self) -> List[ToolApprovalRule]:
        return list(self._rules.values())

    def is_approved(self, session_id: str, tool_name: str, tool_args: Dict[str, Any]) -> bool:
        if self._auto_approve_read_only and self._checker.is_read_only(tool_name):
            return True
        rule = self._lookup(session_id, tool_name)
        if rule is not None:
            return rule.approved
        return not self._checker.check(tool_name, tool_args or {}).needs_approval

    async def request_approval(self, request: ToolApprovalRequest) -> ToolApprovalResponse:
        rule = self._lookup(request.session_id, request.tool_name)
        if rule is not None and not rule.approved:
            LOGGER.info(f"Auto-denied {request.tool_name} by remembered {rule.scope.value} rule")
            return ToolApprovalResponse(approved=False, scope=rule.scope, reason="Previously denied")

        decision = self._checker.check(request.tool_name, request.tool_args or {})
        if decision.needs_approval:
            request.risk_level = decision.risk_level
            if not request.description:
                request.description = decision.reason

        LOGGER.info(
            f"Requesting approval for {request.tool_name} "
            f"(session={request.session_id}, risk={request.risk_level})"
        )
        response = await self._prompt_callback(request)

        if response.remember_decision and response.scope != ApprovalScope.ONCE:
            self.remember(request.session_id, request.tool_name, response.approved, response.scope)
        return response

    def remember(self, session_id: Optional[str], tool_name: str, approved: bool, scope: ApprovalScope) -> None:
        key_session = None if scope == ApprovalScope.GLOBAL else session_id
        self._rules[(key_session, tool_name)] = ToolApprovalRule(
            tool_name=tool_name,
            approved=approved,
            scope=scope,
            session_id=key_session,
        )
        LOGGER.debug(f"Remembered {scope.value} rule: {tool_name} -> {'allow' if approved else 'deny'}")

    def clear_session_rules(self, session_id: str) -> None:
        for key in [k for k in self._rules if k[0] == session_id]:
            del self._rules[key]

    def _lookup(self, session_id: str, tool_name: str) -> Optional[ToolApprovalRule]:
        return self._rules.get((session_id, tool_name)) or self._rules.get((None, tool_name))
