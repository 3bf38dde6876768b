"""Orchestrator events and the subscription bus that broadcasts them."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import AsyncIterator, Callable, List, Optional

from agentTeam.models.orchestrator import OrchestrationPhase
from agentTeam.models.plan import AgentResult, AgentStatus, utcnow

LOGGER = logging.getLogger(__name__)

STREAM_BUFFER_SIZE = 1000


class OrchestratorEventType(str, Enum):
    PLAN_CREATED = "PlanCreated"
    STAGE_STARTED = "StageStarted"
    STAGE_COMPLETED = "StageCompleted"
    WORKER_STARTED = "WorkerStarted"
    WORKER_PROGRESS = "WorkerProgress"
    WORKER_COMPLETED = "WorkerCompleted"
    WORKER_FAILED = "WorkerFailed"
    WORKER_RETRYING = "WorkerRetrying"
    WORKER_SKIPPED = "WorkerSkipped"
    AGGREGATION_STARTED = "AggregationStarted"
    AGGREGATION_COMPLETED = "AggregationCompleted"
    TASK_COMPLETED = "TaskCompleted"
    TASK_FAILED = "TaskFailed"
    TASK_ABORTED = "TaskAborted"
    FOLLOW_UP_SENT = "FollowUpSent"
    FOLLOW_UP_RECEIVED = "FollowUpReceived"
    ORCHESTRATOR_COMMENTARY = "OrchestratorCommentary"
    WORKER_TOOL_INVOCATION = "WorkerToolInvocation"
    INJECTION_RECEIVED = "InjectionReceived"
    INJECTION_PROCESSED = "InjectionProcessed"
    PHASE_CHANGED = "PhaseChanged"
    APPROVAL_REQUESTED = "ApprovalRequested"
    APPROVAL_RESOLVED = "ApprovalResolved"
    CLARIFICATION_RECEIVED = "ClarificationReceived"
    CLARIFICATION_PROCESSING = "ClarificationProcessing"


@dataclass
class OrchestratorEvent:
    event_type: OrchestratorEventType
    message: str = ""
    plan_id: Optional[str] = None
    correlation_id: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class PhaseTransitionEvent(OrchestratorEvent):
    event_type: OrchestratorEventType = OrchestratorEventType.PHASE_CHANGED
    from_phase: Optional[OrchestrationPhase] = None
    to_phase: Optional[OrchestrationPhase] = None
    reason: str = ""


@dataclass
class WorkerProgressEvent(OrchestratorEvent):
    event_type: OrchestratorEventType = OrchestratorEventType.WORKER_PROGRESS
    chunk_id: str = ""
    chunk_title: str = ""
    status: Optional[AgentStatus] = None
    retry_count: int = 0
    result: Optional[AgentResult] = None


@dataclass
class StageEvent(OrchestratorEvent):
    event_type: OrchestratorEventType = OrchestratorEventType.STAGE_STARTED
    stage_index: int = 0
    total_stages: int = 0
    chunk_ids: List[str] = field(default_factory=list)


@dataclass
class ApprovalEvent(OrchestratorEvent):
    event_type: OrchestratorEventType = OrchestratorEventType.APPROVAL_REQUESTED
    tool_name: str = ""
    session_id: str = ""
    approved: Optional[bool] = None
    pending_count: int = 0


EventHandler = Callable[[OrchestratorEvent], None]


class EventBus:
    """Broadcast channel for orchestrator events.

    Two ways to listen: synchronous callbacks via ``subscribe`` and async
    iteration via ``stream``. A failing callback is logged and skipped so one
    listener cannot stall the orchestrator.
    """

    def __init__(self):
        self._handlers: List[EventHandler] = []
        self._queues: List[asyncio.Queue] = []

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        """Register ``handler``; returns a callable that unsubscribes it."""
        self._handlers.append(handler)

        def _unsubscribe() -> None:
            self.unsubscribe(handler)

        return _unsubscribe

    def unsubscribe(self, handler: EventHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    def publish(self, event: OrchestratorEvent) -> None:
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception as e:
                LOGGER.warning(f"Event handler {handler!r} failed on {event.event_type.value}: {e}")
        for queue in list(self._queues):
            if queue.full():
                # slow consumer: the oldest pending event gives way
                queue.get_nowait()
                LOGGER.warning(f"Event stream buffer full ({queue.maxsize}); dropped the oldest event")
            queue.put_nowait(event)

    async def stream(self, max_pending: int = STREAM_BUFFER_SIZE) -> AsyncIterator[OrchestratorEvent]:
        """Yield events as they are published, until the consumer stops iterating.

        At most ``max_pending`` events are buffered per consumer; beyond that
        the oldest buffered event is dropped.
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=max(1, max_pending))
        self._queues.append(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self._queues.remove(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers) + len(self._queues)
