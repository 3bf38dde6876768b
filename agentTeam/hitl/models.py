"""Tool approval request/response models and the approval backend contract."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Protocol, runtime_checkable

from agentTeam.models.plan import utcnow


class ApprovalScope(str, Enum):
    """How far a remembered decision reaches."""

    ONCE = "once"
    SESSION = "session"
    GLOBAL = "global"


@dataclass
class ToolApprovalRequest:
    session_id: str
    tool_name: str
    tool_args: Dict[str, Any] = field(default_factory=dict)
    working_directory: Optional[str] = None
    risk_level: str = "low"
    description: str = ""
    tool_call_id: Optional[str] = None
    chunk_id: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class ToolApprovalResponse:
    approved: bool
    scope: ApprovalScope = ApprovalScope.ONCE
    reason: str = ""
    remember_decision: bool = False


@dataclass(frozen=True)
class ToolApprovalRule:
    """Remembered decision. ``session_id`` is None for global rules."""

    tool_name: str
    approved: bool
    scope: ApprovalScope
    session_id: Optional[str] = None


@runtime_checkable
class ToolApprovalService(Protocol):
    """Backend behind the approval gate."""

    def is_approved(self, session_id: str, tool_name: str, tool_args: Dict[str, Any]) -> bool:
        """Cache fast path: True when an existing rule already covers the call."""
        ...

    async def request_approval(self, request: ToolApprovalRequest) -> ToolApprovalResponse:
        """Actual human interaction."""
        ...
