"""Plan, chunk and result models."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from agentTeam.utils.errors import InvalidStatusTransitionError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AgentRole(str, Enum):
    """Specialisation assigned to a chunk's worker."""

    GENERIC = "Generic"
    PLANNING = "Planning"
    CODE_ANALYSIS = "CodeAnalysis"
    MEMORY_DIAGNOSTICS = "MemoryDiagnostics"
    PERFORMANCE = "Performance"
    TESTING = "Testing"
    IMPLEMENTATION = "Implementation"
    SYNTHESIS = "Synthesis"


class ChunkComplexity(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class AgentStatus(str, Enum):
    """Lifecycle status of a chunk."""

    PENDING = "Pending"
    WAITING_FOR_DEPENDENCIES = "WaitingForDependencies"
    QUEUED = "Queued"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    RETRYING = "Retrying"
    ABORTED = "Aborted"
    SKIPPED = "Skipped"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {AgentStatus.SUCCEEDED, AgentStatus.FAILED, AgentStatus.ABORTED, AgentStatus.SKIPPED}
)

# Forward-only, apart from Retrying -> Running for a new attempt.
_ALLOWED_STATUS_TRANSITIONS: Dict[AgentStatus, frozenset] = {
    AgentStatus.PENDING: frozenset({
        AgentStatus.WAITING_FOR_DEPENDENCIES, AgentStatus.QUEUED, AgentStatus.RUNNING,
        AgentStatus.FAILED, AgentStatus.ABORTED, AgentStatus.SKIPPED,
    }),
    AgentStatus.WAITING_FOR_DEPENDENCIES: frozenset({
        AgentStatus.QUEUED, AgentStatus.RUNNING, AgentStatus.FAILED,
        AgentStatus.ABORTED, AgentStatus.SKIPPED,
    }),
    AgentStatus.QUEUED: frozenset({
        AgentStatus.RUNNING, AgentStatus.FAILED, AgentStatus.ABORTED, AgentStatus.SKIPPED,
    }),
    AgentStatus.RUNNING: frozenset({
        AgentStatus.SUCCEEDED, AgentStatus.FAILED, AgentStatus.ABORTED,
    }),
    AgentStatus.FAILED: frozenset({AgentStatus.RETRYING}),
    AgentStatus.RETRYING: frozenset({
        AgentStatus.RUNNING, AgentStatus.FAILED, AgentStatus.ABORTED, AgentStatus.SKIPPED,
    }),
    AgentStatus.SUCCEEDED: frozenset(),
    AgentStatus.ABORTED: frozenset(),
    AgentStatus.SKIPPED: frozenset(),
}


@dataclass(frozen=True)
class AgentResult:
    """Outcome of one execution attempt of a chunk."""

    chunk_id: str
    is_success: bool
    response: Optional[str] = None
    error_message: Optional[str] = None
    duration: float = 0.0
    session_id: Optional[str] = None
    attempt: int = 1
    completed_at_utc: datetime = field(default_factory=utcnow)

    @classmethod
    def success(cls, chunk_id: str, response: str, duration: float, **kwargs) -> "AgentResult":
        return cls(chunk_id=chunk_id, is_success=True, response=response, duration=duration, **kwargs)

    @classmethod
    def failure(cls, chunk_id: str, error_message: str, duration: float = 0.0, **kwargs) -> "AgentResult":
        return cls(chunk_id=chunk_id, is_success=False, error_message=error_message, duration=duration, **kwargs)


@dataclass
class WorkChunk:
    """One atomic unit of work assigned to a single worker.

    ``prompt`` is the decomposer's text and is never rewritten; dependency
    outputs are added to a separately computed resolved prompt at dispatch.
    """

    chunk_id: str
    title: str
    prompt: str
    sequence_index: int = 0
    depends_on_chunk_ids: List[str] = field(default_factory=list)
    working_scope: Optional[str] = None
    required_skills: List[str] = field(default_factory=list)
    complexity: ChunkComplexity = ChunkComplexity.MEDIUM
    assigned_role: AgentRole = AgentRole.GENERIC
    status: AgentStatus = AgentStatus.PENDING
    assigned_session_id: Optional[str] = None
    assigned_workspace: Optional[str] = None
    retry_count: int = 0
    started_at_utc: Optional[datetime] = None
    completed_at_utc: Optional[datetime] = None
    result: Optional[AgentResult] = None

    def __post_init__(self):
        # set semantics, first occurrence wins
        self.depends_on_chunk_ids = list(dict.fromkeys(self.depends_on_chunk_ids))

    def transition_to(self, new_status: AgentStatus) -> None:
        """Move to ``new_status``, rejecting regressions."""
        if new_status == self.status:
            return
        if new_status not in _ALLOWED_STATUS_TRANSITIONS[self.status]:
            raise InvalidStatusTransitionError(self.chunk_id, self.status.value, new_status.value)
        self.status = new_status
        if new_status == AgentStatus.RUNNING and self.started_at_utc is None:
            self.started_at_utc = utcnow()
        if new_status.is_terminal:
            self.completed_at_utc = utcnow()

    def record_result(self, result: AgentResult) -> None:
        self.result = result


@dataclass
class OrchestrationPlan:
    """DAG of chunks decomposed from one task prompt."""

    task_description: str
    plan_summary: str
    chunks: List[WorkChunk] = field(default_factory=list)
    plan_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at_utc: datetime = field(default_factory=utcnow)

    @property
    def chunk_ids(self) -> List[str]:
        return [c.chunk_id for c in self.chunks]

    def get_chunk(self, chunk_id: str) -> Optional[WorkChunk]:
        for chunk in self.chunks:
            if chunk.chunk_id == chunk_id:
                return chunk
        return None


@dataclass
class ExecutionStage:
    """Chunks with no dependency edges among them, eligible to run concurrently."""

    stage_index: int
    chunks: List[WorkChunk] = field(default_factory=list)

    @property
    def chunk_ids(self) -> List[str]:
        return [c.chunk_id for c in self.chunks]


@dataclass
class ChunkExecutionContext:
    """Per-worker runtime state, discarded when the worker is disposed."""

    chunk: WorkChunk
    workspace_path: str
    session_id: str
    model_id: Optional[str] = None
    resolved_prompt: Optional[str] = None
    dependency_results: Dict[str, AgentResult] = field(default_factory=dict)
    attempt: int = 1
    started_at_utc: Optional[datetime] = None
