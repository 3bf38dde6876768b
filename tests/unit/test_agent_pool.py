"""Tests for AgentPool dispatch, retries and the abort threshold."""

import asyncio

import pytest

from agentTeam.events import EventBus, OrchestratorEventType
from agentTeam.execution import ABORT_THRESHOLD_MESSAGE, AgentPool, build_retry_prompt
from agentTeam.models.config import WorkspaceStrategyType
from agentTeam.models.plan import AgentResult, AgentRole, AgentStatus
from agentTeam.roles.provider import AgentRoleProvider
from agentTeam.utils.errors import MergeConflictError, WorkspaceError
from agentTeam.workspace import FileLockingStrategy
from agentTeam.workspace.in_memory import InMemoryStrategy
from conftest import FakeTransport, make_chunk


class RecordingStrategy(InMemoryStrategy):
    def __init__(self, fail_prepare=False, fail_merge=False):
        self.fail_prepare = fail_prepare
        self.fail_merge = fail_merge
        self.prepared = []
        self.merged = []
        self.cleaned = []

    async def prepare(self, chunk, base_dir):
        if self.fail_prepare:
            raise OSError("disk full")
        self.prepared.append(chunk.chunk_id)
        return base_dir

    async def merge_results(self, workspace_path, base_dir, chunk):
        if self.fail_merge:
            raise MergeConflictError(chunk.chunk_id, "CONFLICT (content): app.py")
        self.merged.append(chunk.chunk_id)

    async def cleanup(self, workspace_path, chunk):
        self.cleaned.append(chunk.chunk_id)


def _pool(transport, strategy=None, events=None, **kwargs):
    return AgentPool(
        transport,
        AgentRoleProvider(defaults={}),
        strategy or RecordingStrategy(),
        events=events,
        **kwargs,
    )


def _chunk_of(session, prompt):
    # worker prompts start with "## Task: Title <id>"
    return prompt.split("\n", 1)[0].rsplit(" ", 1)[-1]


@pytest.mark.asyncio
async def test_empty_batch(fake_transport, config):
    assert await _pool(fake_transport).dispatch_batch([], config) == []


@pytest.mark.asyncio
async def test_results_in_input_order(config):
    delays = {"a": 0.05, "b": 0.01, "c": 0.0}

    async def respond(session, prompt):
        chunk_id = _chunk_of(session, prompt)
        await asyncio.sleep(delays[chunk_id])
        return f"out-{chunk_id}"

    strategy = RecordingStrategy()
    pool = _pool(FakeTransport(respond), strategy)
    chunks = [make_chunk(c) for c in "abc"]

    results = await pool.dispatch_batch(chunks, config)

    assert [r.response for r in results] == ["out-a", "out-b", "out-c"]
    assert all(c.status == AgentStatus.SUCCEEDED for c in chunks)
    assert sorted(strategy.merged) == ["a", "b", "c"]
    assert sorted(strategy.cleaned) == ["a", "b", "c"]
    assert set(pool.completed_results) == {"a", "b", "c"}


@pytest.mark.asyncio
async def test_concurrency_cap(config):
    config.max_parallel_sessions = 2
    running = 0
    peak = 0

    async def respond(session, prompt):
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.02)
        running -= 1
        return "ok"

    await _pool(FakeTransport(respond)).dispatch_batch([make_chunk(str(i)) for i in range(5)], config)

    assert peak == 2


@pytest.mark.asyncio
async def test_retry_succeeds_on_second_attempt(config):
    config.retry_policy.max_retries_per_chunk = 2
    config.retry_policy.retry_delay_seconds = 1.5
    attempts = []
    sleeps = []

    def respond(session, prompt):
        attempts.append(prompt)
        if len(attempts) == 1:
            return RuntimeError("flaky network")
        return "fixed"

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    events = EventBus()
    seen = []
    events.subscribe(seen.append)
    chunk = make_chunk("a")

    results = await _pool(FakeTransport(respond), events=events, sleep=fake_sleep).dispatch_batch([chunk], config)

    assert results[0].is_success
    assert results[0].attempt == 2
    assert chunk.retry_count == 1
    assert chunk.status == AgentStatus.SUCCEEDED
    assert sleeps == [1.5]
    assert "## Retry Context" not in attempts[0]
    assert "## Retry Context\nA previous attempt failed with: flaky network" in attempts[1]
    assert OrchestratorEventType.WORKER_RETRYING in [e.event_type for e in seen]


@pytest.mark.asyncio
async def test_retries_exhausted(config):
    config.retry_policy.max_retries_per_chunk = 1
    transport = FakeTransport(lambda session, prompt: RuntimeError("always broken"))
    chunk = make_chunk("a")

    results = await _pool(transport).dispatch_batch([chunk], config)

    assert not results[0].is_success
    assert len(transport.calls) == 2
    assert chunk.status == AgentStatus.FAILED
    # every attempt gets its own session
    assert len({session.session_id for session, _ in transport.calls}) == 2


@pytest.mark.asyncio
async def test_abort_threshold_skips_remaining(config):
    config.max_parallel_sessions = 1
    config.retry_policy.abort_failure_threshold = 1
    transport = FakeTransport(lambda session, prompt: RuntimeError("nope"))
    chunks = [make_chunk(c) for c in "abc"]

    results = await _pool(transport).dispatch_batch(chunks, config)

    assert [c.status for c in chunks] == [AgentStatus.FAILED, AgentStatus.SKIPPED, AgentStatus.SKIPPED]
    assert results[1].error_message == ABORT_THRESHOLD_MESSAGE
    assert len(transport.calls) == 1


@pytest.mark.asyncio
async def test_workspace_prepare_failure(fake_transport, config):
    strategy = RecordingStrategy(fail_prepare=True)
    chunk = make_chunk("a")

    results = await _pool(fake_transport, strategy).dispatch_batch([chunk], config)

    assert not results[0].is_success
    assert results[0].error_message == "Workspace preparation failed: disk full"
    assert chunk.status == AgentStatus.FAILED
    assert fake_transport.calls == []
    assert strategy.cleaned == []


@pytest.mark.asyncio
async def test_merge_failure_is_commentary(fake_transport, config):
    events = EventBus()
    seen = []
    events.subscribe(seen.append)
    strategy = RecordingStrategy(fail_merge=True)
    chunk = make_chunk("a")

    results = await _pool(fake_transport, strategy, events=events).dispatch_batch([chunk], config)

    assert results[0].is_success
    assert chunk.status == AgentStatus.SUCCEEDED
    commentary = [e for e in seen if e.event_type == OrchestratorEventType.ORCHESTRATOR_COMMENTARY]
    assert "Merge of chunk a failed" in commentary[0].message
    assert strategy.cleaned == ["a"]


@pytest.mark.asyncio
async def test_cleanup_runs_after_worker_failure(config):
    strategy = RecordingStrategy()
    transport = FakeTransport(lambda session, prompt: RuntimeError("bad"))

    await _pool(transport, strategy).dispatch_batch([make_chunk("a")], config)

    assert strategy.cleaned == ["a"]
    assert strategy.merged == []


@pytest.mark.asyncio
async def test_dependency_results_flow_between_batches(config):
    transport = FakeTransport(lambda session, prompt: f"output of {_chunk_of(session, prompt)}")
    pool = _pool(transport)
    pool.set_plan_context("plan-1")

    await pool.dispatch_batch([make_chunk("a")], config)
    await pool.dispatch_batch([make_chunk("b", ["a"])], config)

    assert "### Result from dependency `a`:\noutput of a" in transport.calls[-1][1]

    pool.set_plan_context("plan-2")
    assert pool.completed_results == {}


@pytest.mark.asyncio
async def test_cancel_aborts_in_flight_and_queued(config):
    config.max_parallel_sessions = 1
    started = asyncio.Event()

    async def hang(session, prompt):
        started.set()
        await asyncio.sleep(10)

    pool = _pool(FakeTransport(hang))
    chunks = [make_chunk("a"), make_chunk("b")]
    task = asyncio.create_task(pool.dispatch_batch(chunks, config))
    await started.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    assert [c.status for c in chunks] == [AgentStatus.ABORTED, AgentStatus.ABORTED]
    assert pool.active_worker_count == 0


def test_retry_prompt_includes_partial_response():
    previous = AgentResult(chunk_id="a", is_success=False, response="half " * 1000, error_message="cut off")
    prompt = build_retry_prompt("Do it", previous)
    assert prompt.startswith("Do it\n\n## Retry Context\nA previous attempt failed with: cut off")
    assert "Partial response from the previous attempt:" in prompt
    assert prompt.endswith("Please address the failure above and complete the task.")


@pytest.mark.asyncio
async def test_tool_setup_failure_stays_with_its_chunk(config):
    calls = []

    def tool_factory(path):
        calls.append(path)
        if len(calls) == 2:
            raise RuntimeError("tool factory failed")
        return []

    async def respond(session, prompt):
        await asyncio.sleep(0.02)
        return "ok"

    transport = FakeTransport(respond)
    chunks = [make_chunk(c) for c in "abc"]

    results = await _pool(transport, tool_factory=tool_factory).dispatch_batch(chunks, config)

    assert [r.is_success for r in results] == [True, False, True]
    assert "tool factory failed" in results[1].error_message
    assert all(c.status.is_terminal for c in chunks)
    finished = len(transport.terminated)
    await asyncio.sleep(0.05)
    assert len(transport.terminated) == finished


@pytest.mark.asyncio
async def test_crash_outside_the_worker_fails_only_that_chunk(config):
    class BrokenTestingRole(AgentRoleProvider):
        def resolve_model_id(self, role, config):
            if role == AgentRole.TESTING:
                raise KeyError("no model for role")
            return super().resolve_model_id(role, config)

    events = EventBus()
    seen = []
    events.subscribe(seen.append)
    chunks = [make_chunk("a"), make_chunk("b", assigned_role=AgentRole.TESTING), make_chunk("c")]
    pool = AgentPool(FakeTransport(), BrokenTestingRole(defaults={}), RecordingStrategy(), events=events)

    results = await pool.dispatch_batch(chunks, config)

    assert [r.is_success for r in results] == [True, False, True]
    assert results[1].error_message.startswith("Worker crashed: KeyError")
    assert chunks[1].status == AgentStatus.FAILED
    assert chunks[1].result is results[1]
    assert (OrchestratorEventType.WORKER_FAILED, "b") in [(e.event_type, e.chunk_id) for e in seen]


# ========== Workspace strategy per dispatch ==========

@pytest.mark.asyncio
async def test_config_strategy_overrides_pool_default(config):
    strategy = RecordingStrategy()
    pool = _pool(FakeTransport(), strategy)
    config.workspace_strategy = WorkspaceStrategyType.FILE_LOCKING

    first = await pool.dispatch_batch([make_chunk("a")], config)
    second = await pool.dispatch_batch([make_chunk("b")], config)

    assert first[0].is_success and second[0].is_success
    assert strategy.prepared == []
    assert isinstance(pool._strategies[WorkspaceStrategyType.FILE_LOCKING], FileLockingStrategy)
    assert len(pool._strategies) == 1


@pytest.mark.asyncio
async def test_unavailable_strategy_is_rejected_before_dispatch(fake_transport, config):
    config.workspace_strategy = WorkspaceStrategyType.GIT_WORKTREE
    chunk = make_chunk("a")

    with pytest.raises(WorkspaceError):
        await _pool(fake_transport).dispatch_batch([chunk], config)

    assert chunk.status == AgentStatus.PENDING
    assert fake_transport.calls == []
