"""Orchestrator state machine driving clarify -> plan -> approve -> execute -> aggregate."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Coroutine, Dict, List, Optional, Union

from agentTeam.aggregation.aggregator import ResultAggregator
from agentTeam.events import (
    EventBus,
    OrchestratorEvent,
    OrchestratorEventType,
    PhaseTransitionEvent,
    StageEvent,
    WorkerProgressEvent,
)
from agentTeam.execution.pool import AgentPool
from agentTeam.models.config import MultiAgentConfig
from agentTeam.models.logs import LogEntry, LogLevel
from agentTeam.models.orchestrator import (
    ClarificationRound,
    OrchestrationPhase,
    OrchestratorContext,
    OrchestratorResponse,
    PlanApprovalDecision,
)
from agentTeam.models.plan import AgentResult, AgentStatus, ExecutionStage, OrchestrationPlan
from agentTeam.orchestrator.prompts import (
    ORCHESTRATOR_SYSTEM_PROMPT,
    DecisionAction,
    build_enriched_task,
    build_evaluation_prompt,
    build_follow_up_prompt,
    build_follow_up_task,
    build_resolved_prompts,
    parse_orchestrator_decision,
)
from agentTeam.orchestrator.resilience import call_with_reconnect
from agentTeam.persistence.task_log_store import TaskLogStore
from agentTeam.planning.decomposer import TaskDecomposer
from agentTeam.planning.scheduler import DependencyScheduler
from agentTeam.transport.base import ChatTransport, Session, TransportFailureKind
from agentTeam.utils.errors import (
    CriticalStageFailure,
    InvalidPhaseError,
    InvalidPhaseTransitionError,
    OrchestrationError,
    handle_model_error,
)
from agentTeam.utils.logging_utils import log_error, log_phase_transition, log_plan_created, log_stage_summary
from agentTeam.utils.text import truncate

LOGGER = logging.getLogger(__name__)

P = OrchestrationPhase

# Cancelled is reachable from every phase and is handled separately.
PHASE_TRANSITIONS: Dict[OrchestrationPhase, frozenset] = {
    P.IDLE: frozenset({P.CLARIFYING, P.PLANNING, P.IDLE}),
    P.CLARIFYING: frozenset({P.PLANNING, P.CLARIFYING, P.IDLE}),
    P.PLANNING: frozenset({P.AWAITING_APPROVAL, P.IDLE}),
    P.AWAITING_APPROVAL: frozenset({P.EXECUTING, P.PLANNING, P.IDLE}),
    P.EXECUTING: frozenset({P.AGGREGATING, P.IDLE}),
    P.AGGREGATING: frozenset({P.COMPLETED}),
    P.COMPLETED: frozenset({P.CLARIFYING, P.PLANNING, P.COMPLETED, P.IDLE}),
    P.CANCELLED: frozenset({P.CLARIFYING, P.PLANNING, P.IDLE}),
}

SUBMIT_PHASES = frozenset({P.IDLE, P.COMPLETED, P.CANCELLED})
FOLLOW_UP_PHASES = frozenset({P.IDLE, P.COMPLETED})

UPSTREAM_FAILED_MESSAGE = "Skipped: upstream dependency failed"


def find_critical_failures(failed_chunk_ids: List[str], later_stages: List[ExecutionStage]) -> List[str]:
    """Failed chunk ids that some chunk in a later stage depends on."""
    downstream_deps = {dep for stage in later_stages for c in stage.chunks for dep in c.depends_on_chunk_ids}
    return [chunk_id for chunk_id in failed_chunk_ids if chunk_id in downstream_deps]


class OrchestratorService:
    """Coordinates one conversation with the orchestrator LLM and its worker team.

    Public operations return an ``OrchestratorResponse``. Runtime failures
    (timeouts, lost connections, critical stage failures) are reported on
    ``response.error``; calling an operation in the wrong phase, or while
    another operation is still running, raises ``InvalidPhaseError``.
    Subscribe to ``events`` for phase changes and worker progress.
    """

    def __init__(
        self,
        transport: ChatTransport,
        pool: AgentPool,
        decomposer: Optional[TaskDecomposer] = None,
        scheduler: Optional[DependencyScheduler] = None,
        aggregator: Optional[ResultAggregator] = None,
        log_store: Optional[TaskLogStore] = None,
        events: Optional[EventBus] = None,
        config: Optional[MultiAgentConfig] = None,
    ):
        self.events = events or EventBus()
        self._transport = transport
        self._pool = pool
        self._scheduler = scheduler or DependencyScheduler()
        self._decomposer = decomposer or TaskDecomposer(self._scheduler)
        self._aggregator = aggregator or ResultAggregator()
        self._log_store = log_store

        self._phase = P.IDLE
        self._context = OrchestratorContext()
        # used when an operation is started without an explicit config
        self._default_config = config or MultiAgentConfig()
        self._config: Optional[MultiAgentConfig] = None
        self._current_plan: Optional[OrchestrationPlan] = None
        self._session: Optional[Session] = None
        self._llm_lock = asyncio.Lock()

        self._operation: Optional[asyncio.Task] = None
        self._correlation_id: Optional[str] = None
        self._cancel_requested = False

    # ========== State ==========

    @property
    def phase(self) -> OrchestrationPhase:
        return self._phase

    @property
    def context(self) -> OrchestratorContext:
        return self._context

    @property
    def current_plan(self) -> Optional[OrchestrationPlan]:
        return self._current_plan

    @property
    def config(self) -> Optional[MultiAgentConfig]:
        return self._config

    @property
    def is_busy(self) -> bool:
        return self._operation is not None and not self._operation.done()

    # ========== Public operations ==========

    async def submit_task(self, task_prompt: str, config: Optional[MultiAgentConfig] = None) -> OrchestratorResponse:
        self._require_idle_operation("submit a task")
        if self._phase not in SUBMIT_PHASES:
            raise InvalidPhaseError("submit a task", self._phase.value)

        self._config = config or self._config or self._default_config
        self._current_plan = None
        self._context.original_task_prompt = task_prompt
        self._context.clarification_rounds = []

        LOGGER.info(
            f"Task submitted: model={self._config.orchestrator_model_id}, "
            f"max_parallel={self._config.max_parallel_sessions}, "
            f"workdir={self._config.working_directory}, prompt_length={len(task_prompt)}"
        )
        return await self._run(self._evaluate_task(task_prompt), f"submit-{uuid.uuid4().hex}")

    async def respond_to_clarification(self, answer: str) -> OrchestratorResponse:
        self._require_idle_operation("respond to clarification")
        if self._phase != P.CLARIFYING:
            raise InvalidPhaseError("respond to clarification", self._phase.value)

        correlation_id = f"clarify-{uuid.uuid4().hex}"
        LOGGER.info(f"Clarification received ({len(answer)} chars), correlation_id={correlation_id}")
        self._emit(
            OrchestratorEventType.CLARIFICATION_RECEIVED,
            "Clarification received. Analyzing your response...",
            correlation_id=correlation_id,
        )
        return await self._run(self._process_clarification(answer, correlation_id), correlation_id)

    async def approve_plan(
        self,
        decision: Union[PlanApprovalDecision, str],
        feedback: Optional[str] = None,
    ) -> OrchestratorResponse:
        self._require_idle_operation("approve a plan")
        if self._phase != P.AWAITING_APPROVAL or self._current_plan is None:
            raise InvalidPhaseError("approve a plan", self._phase.value)

        decision = PlanApprovalDecision(decision)
        correlation_id = f"approval-{uuid.uuid4().hex}"

        if decision == PlanApprovalDecision.REJECT:
            self._transition(P.IDLE, "PlanRejected", correlation_id)
            self._current_plan = None
            return OrchestratorResponse(phase=P.IDLE, message="Plan rejected. You can submit a new task.")

        if decision == PlanApprovalDecision.REQUEST_CHANGES:
            plan = self._current_plan
            return await self._run(
                self._plan(plan.task_description, feedback=feedback or "Please revise the plan.", previous_plan=plan),
                correlation_id,
            )

        return await self._run(self._execute_plan(), correlation_id)

    async def inject_instruction(self, instruction: str) -> OrchestratorResponse:
        """Forward a user instruction to the orchestrator while workers run."""
        if self._phase != P.EXECUTING:
            LOGGER.warning(f"Injection ignored, current phase is {self._phase.value}")
            return OrchestratorResponse(
                phase=self._phase,
                message=f"Cannot inject instructions in phase {self._phase.value}. Only available during execution.",
                requires_user_input=False,
            )

        plan_id = self._current_plan.plan_id if self._current_plan else None
        await self._log(
            plan_id,
            LogLevel.INFO,
            f"User instruction: {truncate(instruction, 150)}",
            OrchestratorEventType.INJECTION_RECEIVED,
        )
        try:
            await self._ask_orchestrator(f"[User Injection During Execution] {instruction}")
        except OrchestrationError as e:
            log_error(LOGGER, e, "inject_instruction")
            return OrchestratorResponse(phase=self._phase, message=e.user_message, error=e, requires_user_input=False)

        self._emit(OrchestratorEventType.INJECTION_PROCESSED, "Instruction acknowledged.")
        return OrchestratorResponse(
            phase=self._phase,
            message="Instruction received and acknowledged. Execution continues.",
            requires_user_input=False,
        )

    async def send_follow_up(self, message: str) -> OrchestratorResponse:
        self._require_idle_operation("send a follow-up")
        if self._phase not in FOLLOW_UP_PHASES:
            raise InvalidPhaseError("send a follow-up", self._phase.value)

        self._config = self._config or self._default_config
        return await self._run(self._process_follow_up(message), f"followup-{uuid.uuid4().hex}")

    async def cancel(self) -> OrchestratorResponse:
        """Cancel the running operation (if any) and drop the orchestrator session."""
        LOGGER.info(f"Cancelling orchestration in phase {self._phase.value}")
        self._transition(P.CANCELLED, "UserCancelled", None)

        operation = self._operation
        if operation is not None and not operation.done():
            self._cancel_requested = True
            operation.cancel()
            await asyncio.wait({operation})

        await self._terminate_session()
        plan_id = self._current_plan.plan_id if self._current_plan else None
        await self._log(plan_id, LogLevel.WARNING, "Orchestration cancelled by user.", OrchestratorEventType.TASK_ABORTED)
        return self._cancelled_response()

    async def reset_context(self) -> None:
        """Forget everything: conversation, plans, reports and the remote session."""
        operation = self._operation
        if operation is not None and not operation.done():
            self._cancel_requested = True
            operation.cancel()
            await asyncio.wait({operation})

        await self._terminate_session()
        self._context = OrchestratorContext()
        self._current_plan = None
        self._config = None

        previous = self._phase
        self._phase = P.IDLE
        if previous != P.IDLE:
            self._publish_phase_change(previous, P.IDLE, "ContextReset", None)
        LOGGER.info("Orchestrator context reset")

    # ========== Operation runner ==========

    def _require_idle_operation(self, operation: str) -> None:
        if self.is_busy:
            raise InvalidPhaseError(f"{operation} while another operation is running", self._phase.value)

    async def _run(self, coro: Coroutine, correlation_id: Optional[str]) -> OrchestratorResponse:
        self._cancel_requested = False
        self._correlation_id = correlation_id
        self._operation = asyncio.create_task(coro)
        try:
            return await self._operation
        except asyncio.CancelledError:
            if self._cancel_requested:
                return self._cancelled_response()
            if self._phase != P.CANCELLED:
                self._transition(P.CANCELLED, "ExternalCancellation", None)
            raise
        except (InvalidPhaseError, InvalidPhaseTransitionError):
            raise
        except OrchestrationError as e:
            log_error(LOGGER, e, f"operation failed in phase {self._phase.value}")
            self._return_to_idle("Error")
            return OrchestratorResponse(phase=self._phase, message=e.user_message, error=e)
        except Exception as e:
            log_error(LOGGER, e, f"unexpected failure in phase {self._phase.value}")
            error = OrchestrationError(f"{type(e).__name__}: {e}", user_message=handle_model_error(e))
            self._return_to_idle("Error")
            return OrchestratorResponse(phase=self._phase, message=error.user_message, error=error)
        finally:
            self._operation = None
            self._correlation_id = None

    def _return_to_idle(self, reason: str) -> None:
        if self._phase == P.IDLE or P.IDLE in PHASE_TRANSITIONS[self._phase]:
            self._transition(P.IDLE, reason)

    def _cancelled_response(self) -> OrchestratorResponse:
        return OrchestratorResponse(phase=P.CANCELLED, message="Orchestration was cancelled.")

    # ========== Flows ==========

    async def _evaluate_task(self, task_prompt: str) -> OrchestratorResponse:
        await self._log(
            None, LogLevel.INFO, f"Task submitted: {truncate(task_prompt, 200)}",
            OrchestratorEventType.ORCHESTRATOR_COMMENTARY,
        )
        reply = await self._ask_orchestrator(build_evaluation_prompt(task_prompt))
        decision = parse_orchestrator_decision(reply, default=DecisionAction.PROCEED)

        if decision.action == DecisionAction.CLARIFY:
            LOGGER.info(f"Orchestrator requested clarification with {len(decision.questions)} question(s)")
            self._context.clarification_rounds.append(ClarificationRound(questions=decision.questions))
            self._transition(P.CLARIFYING, "ClarificationRequested")
            return OrchestratorResponse(
                phase=P.CLARIFYING,
                message="I need some clarifications before proceeding.",
                questions=decision.questions,
            )

        if decision.action == DecisionAction.RESPOND:
            LOGGER.info("Conversational reply, no task created")
            self._transition(P.IDLE, "ConversationalResponse")
            return OrchestratorResponse(phase=P.IDLE, message=decision.message)

        return await self._plan(task_prompt)

    async def _process_clarification(self, answer: str, correlation_id: str) -> OrchestratorResponse:
        rounds = self._context.clarification_rounds
        if rounds and rounds[-1].answer is None:
            rounds[-1].answer = answer
        else:
            rounds.append(ClarificationRound(questions=[], answer=answer))

        self._emit(
            OrchestratorEventType.CLARIFICATION_PROCESSING,
            "Sending your response to the orchestrator...",
            correlation_id=correlation_id,
        )
        reply = await self._ask_orchestrator(answer)
        decision = parse_orchestrator_decision(reply, default=DecisionAction.PROCEED)

        if decision.action == DecisionAction.CLARIFY:
            rounds.append(ClarificationRound(questions=decision.questions))
            self._transition(P.CLARIFYING, "MoreQuestions")
            return OrchestratorResponse(
                phase=P.CLARIFYING,
                message="I have a few more questions.",
                questions=decision.questions,
            )

        enriched = build_enriched_task(self._context.original_task_prompt, rounds)
        LOGGER.debug(f"Enriched task for planning ({len(enriched)} chars): {truncate(enriched, 200)}")
        return await self._plan(enriched)

    async def _process_follow_up(self, message: str) -> OrchestratorResponse:
        keep_context = self._config.maintain_follow_up_context
        previous_report = self._context.last_report if keep_context else None

        self._emit(OrchestratorEventType.FOLLOW_UP_SENT, f"Follow-up: {truncate(message, 150)}")
        reply = await self._ask_orchestrator(build_follow_up_prompt(message, previous_report))
        self._emit(OrchestratorEventType.FOLLOW_UP_RECEIVED, truncate(reply, 300))

        decision = parse_orchestrator_decision(reply, default=DecisionAction.RESPOND)
        if decision.action == DecisionAction.PROCEED:
            LOGGER.info("Follow-up flagged as a new task, re-planning")
            self._context.original_task_prompt = message
            return await self._plan(build_follow_up_task(message, previous_report))

        return OrchestratorResponse(phase=self._phase, message=decision.message or reply)

    async def _plan(
        self,
        task_description: str,
        feedback: Optional[str] = None,
        previous_plan: Optional[OrchestrationPlan] = None,
    ) -> OrchestratorResponse:
        self._transition(P.PLANNING, "ChangesRequested" if feedback else "PlanRequested")
        self._emit(OrchestratorEventType.ORCHESTRATOR_COMMENTARY, "Decomposing task into work chunks...")

        plan = await self._decomposer.decompose(
            task_description, self._ask_orchestrator, self._config, feedback, previous_plan
        )
        self._current_plan = plan
        self._context.executed_plans.append(plan)
        log_plan_created(LOGGER, plan)

        await self._log(
            plan.plan_id,
            LogLevel.INFO,
            f"Plan created: {len(plan.chunks)} chunks, summary: {truncate(plan.plan_summary, 200)}",
            OrchestratorEventType.PLAN_CREATED,
        )
        self._transition(P.AWAITING_APPROVAL, "PlanCreated")
        return OrchestratorResponse(phase=P.AWAITING_APPROVAL, message=plan.plan_summary, plan=plan)

    async def _execute_plan(self) -> OrchestratorResponse:
        plan = self._current_plan
        config = self._config
        self._transition(P.EXECUTING, "PlanApproved")
        started = time.monotonic()

        LOGGER.info(
            f"Executing plan {plan.plan_id}: {len(plan.chunks)} chunks, "
            f"max_parallel={config.max_parallel_sessions}"
        )
        self._pool.set_plan_context(plan.plan_id)
        await self._log(plan.plan_id, LogLevel.INFO, "Execution started.", OrchestratorEventType.ORCHESTRATOR_COMMENTARY)

        stages = self._scheduler.build_schedule(plan)
        for chunk in plan.chunks:
            if chunk.depends_on_chunk_ids:
                chunk.transition_to(AgentStatus.WAITING_FOR_DEPENDENCIES)

        all_results: List[AgentResult] = []
        completed: Dict[str, AgentResult] = {}
        critical: Optional[CriticalStageFailure] = None

        try:
            for position, stage in enumerate(stages):
                stage_number = position + 1
                self.events.publish(StageEvent(
                    event_type=OrchestratorEventType.STAGE_STARTED,
                    message=f"Stage {stage_number}/{len(stages)}: {len(stage.chunks)} chunks",
                    plan_id=plan.plan_id,
                    correlation_id=self._correlation_id,
                    stage_index=stage.stage_index,
                    total_stages=len(stages),
                    chunk_ids=stage.chunk_ids,
                ))
                await self._log(
                    plan.plan_id, LogLevel.INFO,
                    f"Stage {stage_number}/{len(stages)} started with {len(stage.chunks)} parallel chunks.",
                )

                stage_started = time.monotonic()
                stage_results = await self._pool.dispatch_batch(
                    stage.chunks, config, build_resolved_prompts(stage.chunks, completed)
                )
                all_results.extend(stage_results)
                completed.update({r.chunk_id: r for r in stage_results if r.is_success})

                failed_ids = [r.chunk_id for r in stage_results if not r.is_success]
                log_stage_summary(LOGGER, stage_number, len(stages), stage_results, time.monotonic() - stage_started)
                self.events.publish(StageEvent(
                    event_type=OrchestratorEventType.STAGE_COMPLETED,
                    message=(
                        f"Stage {stage_number} completed: "
                        f"{len(stage_results) - len(failed_ids)} succeeded, {len(failed_ids)} failed"
                    ),
                    plan_id=plan.plan_id,
                    correlation_id=self._correlation_id,
                    stage_index=stage.stage_index,
                    total_stages=len(stages),
                    chunk_ids=stage.chunk_ids,
                ))

                later_stages = stages[position + 1:]
                critical_ids = find_critical_failures(failed_ids, later_stages)
                if critical_ids:
                    skipped = self._skip_remaining(plan, later_stages)
                    all_results.extend(skipped)
                    critical = CriticalStageFailure(critical_ids, [r.chunk_id for r in skipped])
                    LOGGER.warning(f"Critical chunk failure ({', '.join(critical_ids)}), aborting remaining stages")
                    await self._log(
                        plan.plan_id, LogLevel.WARNING,
                        "Critical chunk failure detected. Aborting remaining stages.",
                        OrchestratorEventType.TASK_FAILED,
                    )
                    break
        except asyncio.CancelledError:
            for chunk in plan.chunks:
                if not chunk.status.is_terminal:
                    chunk.transition_to(AgentStatus.ABORTED)
            raise

        elapsed = time.monotonic() - started
        return await self._aggregate(plan, all_results, elapsed, critical)

    def _skip_remaining(self, plan: OrchestrationPlan, later_stages: List[ExecutionStage]) -> List[AgentResult]:
        skipped = []
        for stage in later_stages:
            for chunk in stage.chunks:
                chunk.transition_to(AgentStatus.SKIPPED)
                result = AgentResult.failure(chunk.chunk_id, UPSTREAM_FAILED_MESSAGE)
                chunk.record_result(result)
                skipped.append(result)
                self.events.publish(WorkerProgressEvent(
                    event_type=OrchestratorEventType.WORKER_SKIPPED,
                    message=UPSTREAM_FAILED_MESSAGE,
                    plan_id=plan.plan_id,
                    correlation_id=self._correlation_id,
                    chunk_id=chunk.chunk_id,
                    chunk_title=chunk.title,
                    status=chunk.status,
                    result=result,
                ))
        return skipped

    async def _aggregate(
        self,
        plan: OrchestrationPlan,
        results: List[AgentResult],
        elapsed: float,
        critical: Optional[CriticalStageFailure],
    ) -> OrchestratorResponse:
        self._transition(P.AGGREGATING, "ExecutionFinished")
        await self._log(
            plan.plan_id, LogLevel.INFO, "Aggregating worker results...", OrchestratorEventType.AGGREGATION_STARTED
        )

        report = await self._aggregator.aggregate(plan, results, self._ask_orchestrator, elapsed)
        self._context.reports.append(report)

        await self._log(
            plan.plan_id,
            LogLevel.INFO,
            f"Aggregation complete. {report.stats.succeeded_chunks}/{report.stats.total_chunks} succeeded "
            f"in {elapsed:.1f}s.",
            OrchestratorEventType.AGGREGATION_COMPLETED,
        )
        self._transition(P.COMPLETED, "AggregationComplete")
        self._emit(OrchestratorEventType.TASK_COMPLETED, "Orchestration completed.", plan_id=plan.plan_id)

        return OrchestratorResponse(
            phase=P.COMPLETED,
            message=report.conversational_summary,
            plan=plan,
            report=report,
            error=critical,
        )

    # ========== Orchestrator session ==========

    def _ensure_session(self) -> Session:
        if self._session is None:
            config = self._config or self._default_config
            self._session = Session(
                session_id=f"orchestrator-{uuid.uuid4().hex}",
                display_name="Multi-Agent Orchestrator",
                model_id=config.orchestrator_model_id,
                working_directory=config.working_directory,
                system_prompt=ORCHESTRATOR_SYSTEM_PROMPT,
            )
            self._context.orchestrator_session_id = self._session.session_id
            LOGGER.info(f"Created orchestrator session: {self._session.session_id}")
        return self._session

    async def _terminate_session(self) -> None:
        session, self._session = self._session, None
        if session is None or not self._transport.has_active_session(session.session_id):
            return
        try:
            await self._transport.terminate_session(session.session_id)
        except Exception as e:
            LOGGER.warning(f"Failed to terminate orchestrator session {session.session_id}: {e}")

    async def _recreate_session(self) -> None:
        await self._terminate_session()
        self._ensure_session()
        self._emit(OrchestratorEventType.ORCHESTRATOR_COMMENTARY, "Orchestrator session recreated.")

    def _on_llm_retry(self, kind: TransportFailureKind, attempt: int, error: BaseException) -> None:
        if kind == TransportFailureKind.TIMEOUT:
            message = f"LLM call timed out (attempt {attempt}), recreating session..."
        else:
            message = f"Connection lost ({type(error).__name__}), reconnecting..."
        self._emit(OrchestratorEventType.ORCHESTRATOR_COMMENTARY, message)

    async def _ask_orchestrator(self, prompt: str) -> str:
        """Send ``prompt`` on the orchestrator session with timeout and one reconnect."""
        async with self._llm_lock:
            self._ensure_session()
            self._context.add_user_message(prompt)
            timeout = (self._config or self._default_config).orchestrator_llm_timeout_seconds

            reply = await call_with_reconnect(
                lambda: self._transport.send_message(self._ensure_session(), prompt),
                self._recreate_session,
                timeout,
                on_retry=self._on_llm_retry,
            )
            self._context.add_assistant_message(reply.content)
            return reply.content

    # ========== Events & logs ==========

    def _transition(self, new_phase: OrchestrationPhase, reason: str = "", correlation_id: Optional[str] = "") -> None:
        """Move to ``new_phase``; ``correlation_id=""`` means the current operation's id."""
        old_phase = self._phase
        if new_phase != P.CANCELLED and new_phase not in PHASE_TRANSITIONS[old_phase]:
            raise InvalidPhaseTransitionError(old_phase.value, new_phase.value)
        if correlation_id == "":
            correlation_id = self._correlation_id

        self._phase = new_phase
        self._publish_phase_change(old_phase, new_phase, reason, correlation_id)

    def _publish_phase_change(
        self,
        old_phase: OrchestrationPhase,
        new_phase: OrchestrationPhase,
        reason: str,
        correlation_id: Optional[str],
    ) -> None:
        log_phase_transition(LOGGER, old_phase.value, new_phase.value, reason, correlation_id)
        self.events.publish(PhaseTransitionEvent(
            message=f"{old_phase.value} → {new_phase.value}",
            plan_id=self._current_plan.plan_id if self._current_plan else None,
            correlation_id=correlation_id,
            from_phase=old_phase,
            to_phase=new_phase,
            reason=reason,
        ))

    def _emit(
        self,
        event_type: OrchestratorEventType,
        message: str,
        correlation_id: Optional[str] = None,
        plan_id: Optional[str] = None,
    ) -> None:
        self.events.publish(OrchestratorEvent(
            event_type=event_type,
            message=message,
            plan_id=plan_id,
            correlation_id=correlation_id or self._correlation_id,
        ))

    async def _log(
        self,
        plan_id: Optional[str],
        level: LogLevel,
        message: str,
        event_type: Optional[OrchestratorEventType] = None,
    ) -> None:
        """Persist to the plan log (when there is a plan) and emit ``event_type`` if given."""
        if plan_id is not None and self._log_store is not None:
            entry = LogEntry(
                level=level,
                source="Orchestrator",
                message=message,
                plan_id=plan_id,
                event_type=event_type.value if event_type else None,
            )
            try:
                await self._log_store.save_log_entry(plan_id, None, entry)
            except Exception as e:
                LOGGER.warning(f"Failed to persist orchestrator log entry: {e}")

        if event_type is not None:
            self._emit(event_type, message, plan_id=plan_id)
