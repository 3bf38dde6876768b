"""Single-use worker executing exactly one chunk."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Any, Callable, Dict, List, Optional

from agentTeam.events import EventBus, OrchestratorEventType, WorkerProgressEvent
from agentTeam.hitl.approval_queue import ApprovalQueue
from agentTeam.hitl.models import ToolApprovalRequest
from agentTeam.models.config import MultiAgentConfig
from agentTeam.models.logs import LogEntry, LogLevel
from agentTeam.models.plan import AgentResult, AgentStatus, ChunkExecutionContext, WorkChunk, utcnow
from agentTeam.persistence.task_log_store import TaskLogStore
from agentTeam.roles.provider import AgentRoleProvider
from agentTeam.transport.base import ChatTransport, Session
from agentTeam.utils.text import truncate

LOGGER = logging.getLogger(__name__)

DEPENDENCY_OUTPUT_LIMIT = 4000
CANCELLED_MESSAGE = "Operation was cancelled"

ToolFactory = Callable[[str], List[Any]]

_STATUS_EVENTS = {
    AgentStatus.RUNNING: OrchestratorEventType.WORKER_STARTED,
    AgentStatus.SUCCEEDED: OrchestratorEventType.WORKER_COMPLETED,
    AgentStatus.FAILED: OrchestratorEventType.WORKER_FAILED,
    AgentStatus.ABORTED: OrchestratorEventType.WORKER_FAILED,
}


class WorkerAgent:
    """Executes one chunk in a prepared workspace through one remote session.

    Lifecycle: Pending -> Running -> Succeeded | Failed | Aborted. Use as an
    async context manager so the session is always disposed::

        async with WorkerAgent(...) as worker:
            result = await worker.execute()
    """

    def __init__(
        self,
        chunk: WorkChunk,
        transport: ChatTransport,
        role_provider: AgentRoleProvider,
        config: MultiAgentConfig,
        workspace_path: str,
        *,
        plan_id: Optional[str] = None,
        task_prompt: Optional[str] = None,
        dependency_results: Optional[Dict[str, AgentResult]] = None,
        approval_queue: Optional[ApprovalQueue] = None,
        log_store: Optional[TaskLogStore] = None,
        events: Optional[EventBus] = None,
        attempt: int = 1,
        tool_factory: Optional[ToolFactory] = None,
    ):
        self.chunk = chunk
        self._transport = transport
        self._role_provider = role_provider
        self._config = config
        self._plan_id = plan_id
        self._approval_queue = approval_queue
        self._log_store = log_store
        self._events = events
        self._tool_factory = tool_factory
        self._executed = False
        self._disposed = False
        self._session: Optional[Session] = None

        self.context = ChunkExecutionContext(
            chunk=chunk,
            workspace_path=workspace_path,
            session_id=f"worker-{uuid.uuid4().hex}",
            model_id=role_provider.resolve_model_id(chunk.assigned_role, config),
            resolved_prompt=task_prompt,
            dependency_results=dict(dependency_results or {}),
            attempt=attempt,
        )

    @property
    def session_id(self) -> str:
        return self.context.session_id

    async def __aenter__(self) -> "WorkerAgent":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.dispose()

    # ========== Prompt ==========

    def build_prompt(self) -> str:
        chunk = self.chunk
        role_config = self._role_provider.get_effective_role_config(chunk.assigned_role, self._config)
        parts = []

        if role_config.system_instructions:
            parts += [role_config.system_instructions, "", "---", ""]

        parts += [f"## Task: {chunk.title}", "", self.context.resolved_prompt or chunk.prompt]

        if chunk.working_scope:
            parts += ["", "## Working Scope", f"Focus your work on: `{chunk.working_scope}`"]

        dependency_sections = []
        for dep_id in chunk.depends_on_chunk_ids:
            dep_result = self.context.dependency_results.get(dep_id)
            if dep_result is None or not dep_result.is_success:
                continue
            dependency_sections += [
                "",
                f"### Result from dependency `{dep_id}`:",
                truncate(dep_result.response or "", DEPENDENCY_OUTPUT_LIMIT, "\n\n[...truncated...]"),
            ]
        if dependency_sections:
            parts += ["", "## Context from Previous Steps"] + dependency_sections

        if chunk.required_skills:
            parts += ["", f"## Required Skills: {', '.join(chunk.required_skills)}"]

        parts += [
            "",
            "## Instructions",
            "- Complete the task thoroughly and provide a detailed response.",
            "- If you need to modify files, do so directly in your working directory.",
            "- Report what you did, any issues encountered, and the final state.",
        ]
        return "\n".join(parts)

    # ========== Execution ==========

    async def execute(self) -> AgentResult:
        if self._executed:
            raise RuntimeError(f"WorkerAgent for chunk {self.chunk.chunk_id} is single-use")
        self._executed = True

        chunk = self.chunk
        chunk.assigned_session_id = self.session_id
        chunk.assigned_workspace = self.context.workspace_path
        self.context.started_at_utc = utcnow()
        started = time.monotonic()
        try:
            role_config = self._role_provider.get_effective_role_config(chunk.assigned_role, self._config)
            self._session = Session(
                session_id=self.session_id,
                display_name=f"Worker-{chunk.assigned_role.value}",
                model_id=self.context.model_id,
                working_directory=self.context.workspace_path,
                temperature=role_config.temperature_override,
                tools=self._tool_factory(self.context.workspace_path) if self._tool_factory else [],
                approval_handler=self._request_tool_approval if self._approval_queue is not None else None,
            )
            await self._transition(AgentStatus.RUNNING, f"Worker started: {chunk.title} (attempt {self.context.attempt})")

            prompt = self.build_prompt()
            reply = await asyncio.wait_for(
                self._transport.send_message(self._session, prompt),
                timeout=self._config.worker_timeout_seconds,
            )
        except asyncio.CancelledError:
            result = self._result(False, started, error=CANCELLED_MESSAGE)
            await self._transition(AgentStatus.ABORTED, f"Worker aborted: {chunk.title}", result, LogLevel.WARNING)
            raise
        except (asyncio.TimeoutError, TimeoutError):
            result = self._result(
                False, started, error=f"Worker timed out after {self._config.worker_timeout_seconds:.0f}s"
            )
            await self._transition(AgentStatus.FAILED, result.error_message, result, LogLevel.ERROR)
            return result
        except Exception as e:
            LOGGER.warning(f"Worker for chunk {chunk.chunk_id} failed: {type(e).__name__}: {e}")
            result = self._result(False, started, error=str(e) or type(e).__name__)
            await self._transition(AgentStatus.FAILED, f"Worker failed: {result.error_message}", result, LogLevel.ERROR)
            return result

        result = self._result(True, started, response=reply.content)
        await self._transition(
            AgentStatus.SUCCEEDED,
            f"Worker completed: {chunk.title} ({result.duration:.1f}s, {len(reply.content)} chars)",
            result,
        )
        return result

    async def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        if self._session is None or not self._transport.has_active_session(self.session_id):
            return
        try:
            await self._transport.terminate_session(self.session_id)
        except Exception as e:
            LOGGER.warning(f"Failed to terminate worker session {self.session_id}: {e}")

    # ========== Internals ==========

    def _result(self, success: bool, started: float, response: str = None, error: str = None) -> AgentResult:
        return AgentResult(
            chunk_id=self.chunk.chunk_id,
            is_success=success,
            response=response,
            error_message=error,
            duration=time.monotonic() - started,
            session_id=self.session_id,
            attempt=self.context.attempt,
        )

    async def _transition(
        self,
        status: AgentStatus,
        message: str,
        result: Optional[AgentResult] = None,
        level: LogLevel = LogLevel.INFO,
    ) -> None:
        self.chunk.transition_to(status)
        if result is not None:
            self.chunk.record_result(result)

        event_type = _STATUS_EVENTS.get(status, OrchestratorEventType.WORKER_PROGRESS)
        if self._events is not None:
            self._events.publish(WorkerProgressEvent(
                event_type=event_type,
                message=message,
                plan_id=self._plan_id,
                chunk_id=self.chunk.chunk_id,
                chunk_title=self.chunk.title,
                status=status,
                retry_count=self.chunk.retry_count,
                result=result,
            ))
        await self._log(level, message, event_type)

    async def _log(self, level: LogLevel, message: str, event_type: OrchestratorEventType) -> None:
        if self._log_store is None or self._plan_id is None:
            return
        entry = LogEntry(
            level=level,
            source=f"Worker:{self.chunk.chunk_id}",
            message=message,
            plan_id=self._plan_id,
            chunk_id=self.chunk.chunk_id,
            event_type=event_type.value,
        )
        try:
            await self._log_store.save_log_entry(self._plan_id, self.chunk.chunk_id, entry)
        except Exception as e:
            LOGGER.warning(f"Failed to persist log entry for chunk {self.chunk.chunk_id}: {e}")

    async def _request_tool_approval(self, tool_name: str, tool_args: Dict[str, Any], tool_call_id: Optional[str]) -> bool:
        request = ToolApprovalRequest(
            session_id=self.session_id,
            tool_name=tool_name,
            tool_args=tool_args,
            working_directory=self.context.workspace_path,
            tool_call_id=tool_call_id,
            chunk_id=self.chunk.chunk_id,
            description=f"[{self.chunk.title}] wants to run {tool_name}",
        )
        if self._events is not None:
            self._events.publish(WorkerProgressEvent(
                event_type=OrchestratorEventType.WORKER_TOOL_INVOCATION,
                message=f"{tool_name} requested",
                plan_id=self._plan_id,
                chunk_id=self.chunk.chunk_id,
                chunk_title=self.chunk.title,
                status=self.chunk.status,
            ))
        response = await self._approval_queue.enqueue(request)
        return response.approved
