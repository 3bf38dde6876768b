"""Data models shared across orchestration components."""

from .config import AgentRoleConfig, MultiAgentConfig, RetryPolicy, WorkspaceStrategyType
from .logs import LogEntry, LogLevel
from .orchestrator import (
    ClarificationRound,
    OrchestrationPhase,
    OrchestratorContext,
    OrchestratorResponse,
    PlanApprovalDecision,
)
from .plan import (
    TERMINAL_STATUSES,
    AgentResult,
    AgentRole,
    AgentStatus,
    ChunkComplexity,
    ChunkExecutionContext,
    ExecutionStage,
    OrchestrationPlan,
    WorkChunk,
    utcnow,
)
from .report import ConsolidatedReport, OrchestrationStats

__all__ = [
    "AgentRoleConfig",
    "MultiAgentConfig",
    "RetryPolicy",
    "WorkspaceStrategyType",
    "LogEntry",
    "LogLevel",
    "ClarificationRound",
    "OrchestrationPhase",
    "OrchestratorContext",
    "OrchestratorResponse",
    "PlanApprovalDecision",
    "TERMINAL_STATUSES",
    "AgentResult",
    "AgentRole",
    "AgentStatus",
    "ChunkComplexity",
    "ChunkExecutionContext",
    "ExecutionStage",
    "OrchestrationPlan",
    "WorkChunk",
    "utcnow",
    "ConsolidatedReport",
    "OrchestrationStats",
]
