"""Orchestrator state models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage

from agentTeam.models.plan import OrchestrationPlan, utcnow
from agentTeam.models.report import ConsolidatedReport


class OrchestrationPhase(str, Enum):
    IDLE = "Idle"
    CLARIFYING = "Clarifying"
    PLANNING = "Planning"
    AWAITING_APPROVAL = "AwaitingApproval"
    EXECUTING = "Executing"
    AGGREGATING = "Aggregating"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class PlanApprovalDecision(str, Enum):
    APPROVE = "approve"
    REQUEST_CHANGES = "request_changes"
    REJECT = "reject"


@dataclass
class ClarificationRound:
    questions: List[str]
    answer: Optional[str] = None


@dataclass
class OrchestratorContext:
    """State owned by one orchestrator for the lifetime of a conversation."""

    orchestrator_session_id: Optional[str] = None
    original_task_prompt: str = ""
    conversation_history: List[BaseMessage] = field(default_factory=list)
    clarification_rounds: List[ClarificationRound] = field(default_factory=list)
    executed_plans: List[OrchestrationPlan] = field(default_factory=list)
    reports: List[ConsolidatedReport] = field(default_factory=list)
    last_activity_utc: datetime = field(default_factory=utcnow)

    def touch(self) -> None:
        self.last_activity_utc = utcnow()

    def add_user_message(self, content: str) -> None:
        self.conversation_history.append(HumanMessage(content=content))
        self.touch()

    def add_assistant_message(self, content: str) -> None:
        self.conversation_history.append(AIMessage(content=content))
        self.touch()

    @property
    def last_report(self) -> Optional[ConsolidatedReport]:
        return self.reports[-1] if self.reports else None


@dataclass
class OrchestratorResponse:
    """Typed result of every public orchestrator operation."""

    phase: OrchestrationPhase
    message: str = ""
    questions: List[str] = field(default_factory=list)
    plan: Optional[OrchestrationPlan] = None
    report: Optional[ConsolidatedReport] = None
    error: Optional[Exception] = None
    requires_user_input: bool = True

    @property
    def is_error(self) -> bool:
        return self.error is not None
