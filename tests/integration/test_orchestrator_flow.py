"""End-to-end orchestrator flows over a scripted transport.

The orchestrator LLM is a reply queue and workers are plain functions, so
every phase of clarify -> plan -> approve -> execute -> aggregate runs for
real without network access.
"""

import asyncio
import json

import pytest

from agentTeam.events import EventBus, OrchestratorEventType
from agentTeam.execution.pool import AgentPool
from agentTeam.models.orchestrator import OrchestrationPhase
from agentTeam.models.plan import AgentStatus
from agentTeam.orchestrator import OrchestratorService
from agentTeam.persistence import JsonlTaskLogStore
from agentTeam.roles.provider import AgentRoleProvider
from agentTeam.utils.errors import CriticalStageFailure, InvalidPhaseError, LlmTimeoutError
from agentTeam.workspace.in_memory import InMemoryStrategy
from conftest import FakeTransport, ScriptedTeam, wait_until

P = OrchestrationPhase

TWO_STEP_PLAN = json.dumps({
    "planSummary": "Analyze, then fix",
    "chunks": [
        {"chunkId": "a", "title": "Title a", "prompt": "Analyze the parser"},
        {"chunkId": "b", "title": "Title b", "prompt": "Fix the parser", "dependsOn": ["a"]},
    ],
})
SUMMARY = "Both steps finished.\n### Recommended Next Steps\n- [ACTION:Add regression tests]"


def chunk_of(prompt):
    return prompt.split("\n", 1)[0].rsplit(" ", 1)[-1]


class Harness:
    def __init__(self, team, tmp_path):
        self.team = team
        self.transport = FakeTransport(team)
        self.events = EventBus()
        self.seen = []
        self.events.subscribe(self.seen.append)
        self.log_store = JsonlTaskLogStore(tmp_path / "logs")
        pool = AgentPool(
            self.transport,
            AgentRoleProvider(defaults={}),
            InMemoryStrategy(),
            log_store=self.log_store,
            events=self.events,
        )
        self.service = OrchestratorService(self.transport, pool, log_store=self.log_store, events=self.events)

    def phases(self):
        return [e.to_phase for e in self.seen if e.event_type == OrchestratorEventType.PHASE_CHANGED]

    def worker_prompts(self):
        return self.transport.prompts_for("worker-")


def make_harness(tmp_path, replies, worker=None):
    return Harness(ScriptedTeam(replies, worker), tmp_path)


# ========== Happy path ==========

@pytest.mark.asyncio
async def test_clarify_plan_approve_complete(tmp_path, config):
    h = make_harness(tmp_path, [
        json.dumps({"action": "clarify", "questions": ["Which parser?"]}),
        json.dumps({"action": "proceed"}),
        TWO_STEP_PLAN,
        SUMMARY,
    ], worker=lambda session, prompt: f"output of {chunk_of(prompt)}")
    service = h.service

    response = await service.submit_task("Fix the parser bug", config)
    assert response.phase == P.CLARIFYING
    assert response.questions == ["Which parser?"]
    assert response.requires_user_input

    response = await service.respond_to_clarification("The JSON one")
    assert response.phase == P.AWAITING_APPROVAL
    assert response.plan.chunk_ids == ["a", "b"]
    assert response.message == "Analyze, then fix"
    decomposition_prompt = h.transport.prompts_for("orchestrator-")[2]
    assert "**User's response:** The JSON one" in decomposition_prompt

    response = await service.approve_plan("approve")
    assert response.phase == P.COMPLETED
    assert not response.is_error
    assert response.report.stats.succeeded_chunks == 2
    assert response.report.next_steps == ["Add regression tests"]
    assert response.message.startswith("Both steps finished.")
    assert all(c.status == AgentStatus.SUCCEEDED for c in response.plan.chunks)

    # downstream chunk sees the upstream output
    second = h.worker_prompts()[1]
    assert "[Output from 'a']: output of a" in second

    assert h.phases() == [
        P.CLARIFYING, P.PLANNING, P.AWAITING_APPROVAL, P.EXECUTING, P.AGGREGATING, P.COMPLETED,
    ]
    assert service.context.last_report is response.report
    assert len(service.context.executed_plans) == 1

    logged = await h.log_store.get_plan_logs(response.plan.plan_id)
    event_types = {e.event_type for e in logged}
    assert {"PlanCreated", "WorkerCompleted", "AggregationCompleted"} <= event_types


@pytest.mark.asyncio
async def test_conversational_reply_returns_to_idle(tmp_path, config):
    h = make_harness(tmp_path, [json.dumps({"action": "respond", "message": "Hello there!"})])

    response = await h.service.submit_task("hi", config)

    assert response.phase == P.IDLE
    assert response.message == "Hello there!"
    assert h.service.current_plan is None


@pytest.mark.asyncio
async def test_phase_events_share_correlation_id(tmp_path, config):
    h = make_harness(tmp_path, ["{}", TWO_STEP_PLAN])

    await h.service.submit_task("task", config)

    ids = {e.correlation_id for e in h.seen if e.event_type == OrchestratorEventType.PHASE_CHANGED}
    assert len(ids) == 1
    assert next(iter(ids)).startswith("submit-")


# ========== Plan approval ==========

@pytest.mark.asyncio
async def test_reject_returns_to_idle(tmp_path, config):
    h = make_harness(tmp_path, ["{}", TWO_STEP_PLAN])
    await h.service.submit_task("task", config)

    response = await h.service.approve_plan("reject")

    assert response.phase == P.IDLE
    assert h.service.current_plan is None
    assert h.worker_prompts() == []


@pytest.mark.asyncio
async def test_request_changes_replans(tmp_path, config):
    single = json.dumps({"planSummary": "One step", "chunks": [{"chunkId": "only", "title": "All", "prompt": "All"}]})
    h = make_harness(tmp_path, ["{}", TWO_STEP_PLAN, single])
    first = await h.service.submit_task("task", config)

    response = await h.service.approve_plan("request_changes", "Merge it into one step")

    assert response.phase == P.AWAITING_APPROVAL
    assert response.plan.chunk_ids == ["only"]
    assert response.plan.plan_id != first.plan.plan_id
    replan_prompt = h.transport.prompts_for("orchestrator-")[-1]
    assert "## Requested Changes" in replan_prompt
    assert "Merge it into one step" in replan_prompt


# ========== Failures ==========

@pytest.mark.asyncio
async def test_critical_failure_skips_downstream(tmp_path, config):
    def worker(session, prompt):
        if chunk_of(prompt) == "a":
            return RuntimeError("analysis crashed")
        return "should not run"

    h = make_harness(tmp_path, ["{}", TWO_STEP_PLAN, "Partial results only."], worker=worker)
    await h.service.submit_task("task", config)

    response = await h.service.approve_plan("approve")

    assert response.phase == P.COMPLETED
    assert isinstance(response.error, CriticalStageFailure)
    assert response.error.failed_chunk_ids == ["a"]
    assert response.error.blocked_chunk_ids == ["b"]
    plan = response.plan
    assert plan.get_chunk("a").status == AgentStatus.FAILED
    assert plan.get_chunk("b").status == AgentStatus.SKIPPED
    assert response.report.stats.failed_chunks == 1
    assert response.report.stats.skipped_chunks == 1
    assert len(h.worker_prompts()) == 1


@pytest.mark.asyncio
async def test_independent_failure_is_not_critical(tmp_path, config):
    plan = json.dumps({"planSummary": "Parallel", "chunks": [
        {"chunkId": "x", "title": "Title x", "prompt": "x"},
        {"chunkId": "y", "title": "Title y", "prompt": "y"},
    ]})

    def worker(session, prompt):
        return RuntimeError("boom") if chunk_of(prompt) == "x" else "fine"

    h = make_harness(tmp_path, ["{}", plan, "One of two worked."], worker=worker)
    await h.service.submit_task("task", config)

    response = await h.service.approve_plan("approve")

    assert response.phase == P.COMPLETED
    assert response.error is None
    assert response.report.stats.succeeded_chunks == 1


@pytest.mark.asyncio
async def test_llm_timeout_reports_error_and_returns_to_idle(tmp_path, config):
    config.orchestrator_llm_timeout_seconds = 0.05

    async def hang(prompt):
        await asyncio.sleep(5)

    h = make_harness(tmp_path, [hang, hang])

    response = await h.service.submit_task("task", config)

    assert isinstance(response.error, LlmTimeoutError)
    assert response.phase == P.IDLE
    assert "timed out" in response.message
    # the timed-out session was replaced once
    assert len(h.transport.terminated) == 1


@pytest.mark.asyncio
async def test_operations_rejected_in_wrong_phase(tmp_path, config):
    h = make_harness(tmp_path, [])

    with pytest.raises(InvalidPhaseError):
        await h.service.respond_to_clarification("answer")
    with pytest.raises(InvalidPhaseError):
        await h.service.approve_plan("approve")

    response = await h.service.inject_instruction("faster please")
    assert response.phase == P.IDLE
    assert not response.requires_user_input
    assert "Only available during execution" in response.message


# ========== Execution control ==========

@pytest.mark.asyncio
async def test_inject_and_cancel_during_execution(tmp_path, config):
    started = asyncio.Event()

    async def worker(session, prompt):
        started.set()
        await asyncio.sleep(10)

    h = make_harness(tmp_path, ["{}", TWO_STEP_PLAN, "Noted."], worker=worker)
    service = h.service
    await service.submit_task("task", config)

    running = asyncio.create_task(service.approve_plan("approve"))
    await started.wait()
    assert service.phase == P.EXECUTING
    assert service.is_busy

    with pytest.raises(InvalidPhaseError):
        await service.submit_task("another task", config)

    injected = await service.inject_instruction("Also check the tokenizer")
    assert injected.message.startswith("Instruction received")
    assert "[User Injection During Execution] Also check the tokenizer" in h.transport.prompts_for("orchestrator-")

    cancelled = await service.cancel()
    assert cancelled.phase == P.CANCELLED

    response = await running
    assert response.phase == P.CANCELLED
    assert [c.status for c in service.current_plan.chunks] == [AgentStatus.ABORTED, AgentStatus.ABORTED]
    assert service.phase == P.CANCELLED
    assert not service.is_busy


@pytest.mark.asyncio
async def test_cancel_when_idle(tmp_path, config):
    h = make_harness(tmp_path, [])

    response = await h.service.cancel()

    assert response.phase == P.CANCELLED
    assert h.phases() == [P.CANCELLED]


# ========== Follow-ups and reset ==========

async def _completed(h, config):
    await h.service.submit_task("task", config)
    return await h.service.approve_plan("approve")


@pytest.mark.asyncio
async def test_follow_up_answer_keeps_completed(tmp_path, config):
    h = make_harness(tmp_path, [
        "{}", TWO_STEP_PLAN, SUMMARY,
        "Because the tokenizer dropped quotes.",
    ])
    await _completed(h, config)

    response = await h.service.send_follow_up("Why did it fail before?")

    assert response.phase == P.COMPLETED
    assert response.message == "Because the tokenizer dropped quotes."
    follow_up_prompt = h.transport.prompts_for("orchestrator-")[-1]
    assert "## Previous Result\nBoth steps finished." in follow_up_prompt


@pytest.mark.asyncio
async def test_follow_up_new_task_replans(tmp_path, config):
    h = make_harness(tmp_path, [
        "{}", TWO_STEP_PLAN, SUMMARY,
        json.dumps({"action": "proceed"}),
        TWO_STEP_PLAN,
    ])
    await _completed(h, config)

    response = await h.service.send_follow_up("Now add the regression tests")

    assert response.phase == P.AWAITING_APPROVAL
    assert h.service.context.original_task_prompt == "Now add the regression tests"
    assert "## Context from the Previous Run" in response.plan.task_description
    assert len(h.service.context.executed_plans) == 2


@pytest.mark.asyncio
async def test_reset_context(tmp_path, config):
    h = make_harness(tmp_path, ["{}", TWO_STEP_PLAN, SUMMARY])
    await _completed(h, config)
    orchestrator_session = h.service.context.orchestrator_session_id

    await h.service.reset_context()

    assert h.service.phase == P.IDLE
    assert h.service.context.reports == []
    assert h.service.current_plan is None
    assert orchestrator_session in h.transport.terminated
    reset_events = [e for e in h.seen if e.event_type == OrchestratorEventType.PHASE_CHANGED and e.reason == "ContextReset"]
    assert len(reset_events) == 1
