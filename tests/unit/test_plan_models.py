"""Tests for plan/chunk models and config construction."""

import pytest

from agentTeam.models.config import MultiAgentConfig, WorkspaceStrategyType
from agentTeam.models.plan import AgentStatus
from agentTeam.utils.errors import InvalidStatusTransitionError
from conftest import make_chunk, make_plan


def test_dependencies_deduplicated_in_order():
    chunk = make_chunk("c", ["b", "a", "b"])
    assert chunk.depends_on_chunk_ids == ["b", "a"]


def test_happy_path_transitions_set_timestamps():
    chunk = make_chunk("a")
    for status in (AgentStatus.QUEUED, AgentStatus.RUNNING, AgentStatus.SUCCEEDED):
        chunk.transition_to(status)
    assert chunk.status == AgentStatus.SUCCEEDED
    assert chunk.started_at_utc is not None
    assert chunk.completed_at_utc >= chunk.started_at_utc


def test_retry_cycle_is_allowed():
    chunk = make_chunk("a")
    for status in (AgentStatus.RUNNING, AgentStatus.FAILED, AgentStatus.RETRYING, AgentStatus.RUNNING):
        chunk.transition_to(status)
    assert chunk.status == AgentStatus.RUNNING


@pytest.mark.parametrize("path", [
    [AgentStatus.RUNNING, AgentStatus.SUCCEEDED, AgentStatus.RUNNING],
    [AgentStatus.RUNNING, AgentStatus.QUEUED],
    [AgentStatus.SKIPPED, AgentStatus.FAILED],
    [AgentStatus.RUNNING, AgentStatus.ABORTED, AgentStatus.RETRYING],
])
def test_regressions_rejected(path):
    chunk = make_chunk("a")
    for status in path[:-1]:
        chunk.transition_to(status)
    with pytest.raises(InvalidStatusTransitionError):
        chunk.transition_to(path[-1])


def test_same_status_is_noop():
    chunk = make_chunk("a")
    chunk.transition_to(AgentStatus.PENDING)
    assert chunk.status == AgentStatus.PENDING


def test_terminal_statuses():
    assert {s for s in AgentStatus if s.is_terminal} == {
        AgentStatus.SUCCEEDED, AgentStatus.FAILED, AgentStatus.ABORTED, AgentStatus.SKIPPED,
    }


def test_plan_lookup():
    plan = make_plan(make_chunk("a"), make_chunk("b"))
    assert plan.chunk_ids == ["a", "b"]
    assert plan.get_chunk("b").chunk_id == "b"
    assert plan.get_chunk("zzz") is None
    assert make_plan().plan_id != plan.plan_id


def test_effective_worker_model_falls_back_to_orchestrator():
    assert MultiAgentConfig(orchestrator_model_id="o").effective_worker_model_id == "o"
    assert MultiAgentConfig(orchestrator_model_id="o", worker_model_id="w").effective_worker_model_id == "w"


def test_config_validation():
    with pytest.raises(ValueError):
        MultiAgentConfig(max_parallel_sessions=0)
    assert MultiAgentConfig(workspace_strategy="file_locking").workspace_strategy == WorkspaceStrategyType.FILE_LOCKING
