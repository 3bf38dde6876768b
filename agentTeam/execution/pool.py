"""Bounded-concurrency dispatch of chunks to single-use workers."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional

from agentTeam.events import EventBus, OrchestratorEventType, WorkerProgressEvent
from agentTeam.execution.worker import ToolFactory, WorkerAgent
from agentTeam.hitl.approval_queue import ApprovalQueue
from agentTeam.models.config import MultiAgentConfig, WorkspaceStrategyType
from agentTeam.models.logs import LogEntry, LogLevel
from agentTeam.models.plan import AgentResult, AgentStatus, WorkChunk
from agentTeam.persistence.task_log_store import TaskLogStore
from agentTeam.roles.provider import AgentRoleProvider
from agentTeam.transport.base import ChatTransport
from agentTeam.utils.errors import WorkspaceError
from agentTeam.utils.text import truncate
from agentTeam.workspace import WorkspaceStrategy, create_workspace_strategy

LOGGER = logging.getLogger(__name__)

RETRY_PARTIAL_RESPONSE_LIMIT = 2000
ABORT_THRESHOLD_MESSAGE = "Skipped: abort failure threshold reached"


def build_retry_prompt(task_prompt: str, previous: AgentResult) -> str:
    """Append the previous attempt's failure so the worker can correct course."""
    sections = [
        task_prompt,
        "",
        "## Retry Context",
        f"A previous attempt failed with: {previous.error_message or 'unknown error'}",
    ]
    if previous.response:
        sections += [
            "",
            "Partial response from the previous attempt:",
            truncate(previous.response, RETRY_PARTIAL_RESPONSE_LIMIT),
        ]
    sections += ["", "Please address the failure above and complete the task."]
    return "\n".join(sections)


class AgentPool:
    """Runs a batch of chunks with at most ``max_parallel_sessions`` in flight.

    Each attempt gets a fresh workspace and a fresh WorkerAgent. Failed
    chunks are retried per the config's RetryPolicy; once the number of
    chunks that failed for good reaches ``abort_failure_threshold``, chunks
    that have not started yet are marked Skipped instead of dispatched.
    """

    def __init__(
        self,
        transport: ChatTransport,
        role_provider: AgentRoleProvider,
        workspace_strategy: WorkspaceStrategy,
        approval_queue: Optional[ApprovalQueue] = None,
        log_store: Optional[TaskLogStore] = None,
        events: Optional[EventBus] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        tool_factory: Optional[ToolFactory] = None,
    ):
        self._transport = transport
        self._role_provider = role_provider
        self._workspace = workspace_strategy
        self._strategies: Dict[WorkspaceStrategyType, WorkspaceStrategy] = {}
        self._approval_queue = approval_queue
        self._log_store = log_store
        self._events = events
        self._sleep = sleep
        self._tool_factory = tool_factory

        self._plan_id: Optional[str] = None
        self._completed_results: Dict[str, AgentResult] = {}
        self._active_workers = 0

    @property
    def active_worker_count(self) -> int:
        return self._active_workers

    @property
    def completed_results(self) -> Dict[str, AgentResult]:
        return dict(self._completed_results)

    def set_plan_context(self, plan_id: str) -> None:
        """Start a new plan: forget results of the previous one."""
        self._plan_id = plan_id
        self._completed_results.clear()

    def register_result(self, chunk_id: str, result: AgentResult) -> None:
        if result.is_success:
            self._completed_results[chunk_id] = result

    async def _workspace_for(self, config: MultiAgentConfig) -> WorkspaceStrategy:
        """Strategy named by ``config``; other kinds than the pool's own are built once and reused."""
        kind = WorkspaceStrategyType(config.workspace_strategy)
        if kind.value == self._workspace.name:
            return self._workspace

        strategy = self._strategies.get(kind)
        if strategy is None:
            strategy = create_workspace_strategy(kind)
            if not await strategy.is_available(config.working_directory):
                raise WorkspaceError(
                    f"Workspace strategy {kind.value} is unavailable for {config.working_directory}",
                    user_message=f"Workspace strategy '{kind.value}' cannot be used in {config.working_directory}.",
                )
            LOGGER.info(f"Switching workspace strategy to {kind.value} (pool default: {self._workspace.name})")
            self._strategies[kind] = strategy
        return strategy

    # ========== Dispatch ==========

    async def dispatch_batch(
        self,
        chunks: List[WorkChunk],
        config: MultiAgentConfig,
        resolved_prompts: Optional[Dict[str, str]] = None,
    ) -> List[AgentResult]:
        """Execute ``chunks`` concurrently and return one result per chunk, in input order.

        Args:
            chunks: Chunks of one stage, all dependencies already satisfied
            config: Concurrency, retry and timeout settings
            resolved_prompts: Optional prompt override per chunk id

        Returns:
            Final AgentResult for each chunk
        """
        if not chunks:
            return []

        workspace = await self._workspace_for(config)
        resolved_prompts = resolved_prompts or {}
        policy = config.retry_policy
        semaphore = asyncio.Semaphore(max(1, config.max_parallel_sessions))
        terminal_failures = 0

        for chunk in chunks:
            chunk.transition_to(AgentStatus.QUEUED)

        async def run(chunk: WorkChunk) -> AgentResult:
            nonlocal terminal_failures
            try:
                async with semaphore:
                    if policy.abort_failure_threshold > 0 and terminal_failures >= policy.abort_failure_threshold:
                        return await self._skip(chunk)
                    result = await self._execute_with_retry(
                        chunk, config, workspace, resolved_prompts.get(chunk.chunk_id) or chunk.prompt
                    )
            except asyncio.CancelledError:
                if not chunk.status.is_terminal:
                    chunk.transition_to(AgentStatus.ABORTED)
                raise
            except Exception as e:
                # one crashed chunk must not tear down its siblings
                result = await self._fail_unexpectedly(chunk, e)

            if not result.is_success:
                terminal_failures += 1
                if terminal_failures == policy.abort_failure_threshold:
                    LOGGER.warning(
                        f"Abort threshold reached ({terminal_failures} failed chunk(s)); "
                        f"remaining chunks in this batch will be skipped"
                    )
            return result

        LOGGER.info(
            f"Dispatching {len(chunks)} chunk(s) with max {config.max_parallel_sessions} in parallel"
        )
        results = await asyncio.gather(*(run(c) for c in chunks))
        return list(results)

    async def _execute_with_retry(
        self, chunk: WorkChunk, config: MultiAgentConfig, workspace: WorkspaceStrategy, task_prompt: str
    ) -> AgentResult:
        policy = config.retry_policy
        prompt = task_prompt
        attempt = 0

        while True:
            attempt += 1
            result = await self._execute_once(chunk, config, workspace, prompt, attempt)
            if result.is_success or attempt > policy.max_retries_per_chunk:
                break

            chunk.retry_count += 1
            chunk.transition_to(AgentStatus.RETRYING)
            message = (
                f"Retrying {chunk.chunk_id} ({chunk.retry_count}/{policy.max_retries_per_chunk}): "
                f"{result.error_message}"
            )
            LOGGER.info(message)
            self._publish(chunk, OrchestratorEventType.WORKER_RETRYING, message, result)
            await self._log(chunk, LogLevel.WARNING, message, OrchestratorEventType.WORKER_RETRYING)

            if policy.reprompt_on_retry:
                prompt = build_retry_prompt(task_prompt, result)
            if policy.retry_delay_seconds > 0:
                await self._sleep(policy.retry_delay_seconds)

        chunk.record_result(result)
        self.register_result(chunk.chunk_id, result)
        return result

    async def _execute_once(
        self,
        chunk: WorkChunk,
        config: MultiAgentConfig,
        workspace: WorkspaceStrategy,
        task_prompt: str,
        attempt: int,
    ) -> AgentResult:
        base_dir = config.working_directory
        try:
            workspace_path = await workspace.prepare(chunk, base_dir)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            message = f"Workspace preparation failed: {e}"
            LOGGER.error(f"Chunk {chunk.chunk_id}: {message}")
            result = AgentResult.failure(chunk.chunk_id, message, attempt=attempt)
            chunk.transition_to(AgentStatus.FAILED)
            chunk.record_result(result)
            self._publish(chunk, OrchestratorEventType.WORKER_FAILED, message, result)
            await self._log(chunk, LogLevel.ERROR, message, OrchestratorEventType.WORKER_FAILED)
            return result

        self._active_workers += 1
        try:
            dependency_results = {
                dep_id: self._completed_results[dep_id]
                for dep_id in chunk.depends_on_chunk_ids
                if dep_id in self._completed_results
            }
            async with WorkerAgent(
                chunk,
                self._transport,
                self._role_provider,
                config,
                workspace_path,
                plan_id=self._plan_id,
                task_prompt=task_prompt,
                dependency_results=dependency_results,
                approval_queue=self._approval_queue,
                log_store=self._log_store,
                events=self._events,
                attempt=attempt,
                tool_factory=self._tool_factory,
            ) as worker:
                result = await worker.execute()

            if result.is_success:
                await self._merge(workspace, chunk, workspace_path, base_dir)
            return result
        finally:
            self._active_workers -= 1
            await self._cleanup(workspace, chunk, workspace_path)

    async def _merge(self, workspace: WorkspaceStrategy, chunk: WorkChunk, workspace_path: str, base_dir: str) -> None:
        try:
            await workspace.merge_results(workspace_path, base_dir, chunk)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # the chunk keeps its Succeeded status; the conflict is surfaced as commentary
            message = f"Merge of chunk {chunk.chunk_id} failed: {e}"
            LOGGER.error(message)
            self._publish(chunk, OrchestratorEventType.ORCHESTRATOR_COMMENTARY, message)
            await self._log(chunk, LogLevel.ERROR, message, OrchestratorEventType.ORCHESTRATOR_COMMENTARY)

    async def _cleanup(self, workspace: WorkspaceStrategy, chunk: WorkChunk, workspace_path: str) -> None:
        try:
            await workspace.cleanup(workspace_path, chunk)
        except Exception as e:
            LOGGER.warning(f"Workspace cleanup failed for chunk {chunk.chunk_id}: {e}")

    async def _fail_unexpectedly(self, chunk: WorkChunk, error: Exception) -> AgentResult:
        message = f"Worker crashed: {type(error).__name__}: {error}"
        LOGGER.exception(f"Chunk {chunk.chunk_id}: {message}")
        if not chunk.status.is_terminal:
            chunk.transition_to(AgentStatus.FAILED)
        result = AgentResult.failure(chunk.chunk_id, message)
        chunk.record_result(result)
        self._publish(chunk, OrchestratorEventType.WORKER_FAILED, message, result)
        await self._log(chunk, LogLevel.ERROR, message, OrchestratorEventType.WORKER_FAILED)
        return result

    async def _skip(self, chunk: WorkChunk) -> AgentResult:
        chunk.transition_to(AgentStatus.SKIPPED)
        result = AgentResult.failure(chunk.chunk_id, ABORT_THRESHOLD_MESSAGE)
        chunk.record_result(result)
        self._publish(chunk, OrchestratorEventType.WORKER_SKIPPED, ABORT_THRESHOLD_MESSAGE, result)
        await self._log(chunk, LogLevel.WARNING, ABORT_THRESHOLD_MESSAGE, OrchestratorEventType.WORKER_SKIPPED)
        return result

    # ========== Events & logs ==========

    def _publish(
        self,
        chunk: WorkChunk,
        event_type: OrchestratorEventType,
        message: str,
        result: Optional[AgentResult] = None,
    ) -> None:
        if self._events is None:
            return
        self._events.publish(WorkerProgressEvent(
            event_type=event_type,
            message=message,
            plan_id=self._plan_id,
            chunk_id=chunk.chunk_id,
            chunk_title=chunk.title,
            status=chunk.status,
            retry_count=chunk.retry_count,
            result=result,
        ))

    async def _log(self, chunk: WorkChunk, level: LogLevel, message: str, event_type: OrchestratorEventType) -> None:
        if self._log_store is None or self._plan_id is None:
            return
        entry = LogEntry(
            level=level,
            source="AgentPool",
            message=message,
            plan_id=self._plan_id,
            chunk_id=chunk.chunk_id,
            event_type=event_type.value,
        )
        try:
            await self._log_store.save_log_entry(self._plan_id, chunk.chunk_id, entry)
        except Exception as e:
            LOGGER.warning(f"Failed to persist log entry for chunk {chunk.chunk_id}: {e}")
