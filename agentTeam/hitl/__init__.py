"""Human-in-the-loop tool approval."""

from .approval_checker import READ_ONLY_TOOLS, ApprovalChecker, ApprovalDecision
from .approval_queue import ApprovalQueue
from .approval_service import InteractiveApprovalService
from .models import (
    ApprovalScope,
    ToolApprovalRequest,
    ToolApprovalResponse,
    ToolApprovalRule,
    ToolApprovalService,
)

__all__ = [
    "READ_ONLY_TOOLS",
    "ApprovalChecker",
    "ApprovalDecision",
    "ApprovalQueue",
    "InteractiveApprovalService",
    "ApprovalScope",
    "ToolApprovalRequest",
    "ToolApprovalResponse",
    "ToolApprovalRule",
    "ToolApprovalService",
]
