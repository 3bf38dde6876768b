"""Tests for the console front-end."""

import asyncio
import json

import pytest

from agentTeam.cli import AgentTeamCLI, format_tool_args
from agentTeam.events import EventBus
from agentTeam.execution.pool import AgentPool
from agentTeam.hitl import ApprovalScope, ToolApprovalRequest
from agentTeam.models.orchestrator import OrchestrationPhase
from agentTeam.orchestrator import OrchestratorService
from agentTeam.roles.provider import AgentRoleProvider
from agentTeam.workspace.in_memory import InMemoryStrategy
from conftest import FakeTransport, ScriptedTeam

P = OrchestrationPhase

PLAN = json.dumps({"planSummary": "One step", "chunks": [{"chunkId": "a", "title": "Write docs", "prompt": "Write"}]})


def _cli(replies, config, worker=None):
    transport = FakeTransport(ScriptedTeam(replies, worker=worker))
    events = EventBus()
    pool = AgentPool(transport, AgentRoleProvider(defaults={}), InMemoryStrategy(), events=events)
    orchestrator = OrchestratorService(transport, pool, events=events, config=config)
    return AgentTeamCLI(orchestrator)


def test_format_tool_args():
    assert format_tool_args({}) == "(无)"
    assert format_tool_args({"path": "a.txt", "lines": [1, 2]}) == "path=a.txt, lines=[1, 2]"
    assert format_tool_args({"command": "x" * 100}, max_length=10) == "command=xxxxxxxxxx..."


@pytest.mark.asyncio
async def test_message_routing_through_phases(config, capsys):
    cli = _cli(["{}", PLAN, "Docs written.\n- [ACTION:Publish]"], config)
    orch = cli.orchestrator

    await cli.handle_user_message("write the docs")
    await cli._operation
    assert orch.phase == P.AWAITING_APPROVAL
    assert "📋 计划: One step" in capsys.readouterr().out

    assert await cli.handle_command("/approve")
    await cli._operation
    assert orch.phase == P.COMPLETED
    out = capsys.readouterr().out
    assert "Docs written." in out
    assert "[ACTION:" not in out
    assert "📊 1/1 成功" in out
    assert "1. Publish" in out

    assert not await cli.handle_command("/quit")
    await cli.on_shutdown()


@pytest.mark.asyncio
async def test_critical_failure_still_prints_the_report(config, capsys):
    plan = json.dumps({"planSummary": "Two steps", "chunks": [
        {"chunkId": "a", "title": "Analyse", "prompt": "Analyse"},
        {"chunkId": "b", "title": "Fix", "prompt": "Fix", "dependsOn": ["a"]},
    ]})

    def worker(session, prompt):
        if "## Task: Analyse" in prompt:
            return RuntimeError("analysis crashed")
        return "fixed"

    cli = _cli(["{}", plan, "Partial.\n- [ACTION:Retry a]"], config, worker=worker)
    await cli.orchestrator.submit_task("fix the bug", config)
    capsys.readouterr()

    await cli.handle_command("/approve")
    await cli._operation
    out = capsys.readouterr().out

    assert cli.orchestrator.phase == P.COMPLETED
    assert "Partial." in out
    assert "[ACTION:" not in out
    assert "📊 0/2 成功, 1 失败, 1 跳过" in out
    assert "⚠️" in out
    assert "1. Retry a" in out


@pytest.mark.asyncio
async def test_unknown_command_keeps_running(config, capsys):
    cli = _cli([], config)
    assert await cli.handle_command("/dance")
    assert "未知命令: /dance" in capsys.readouterr().out


@pytest.mark.parametrize("answer,approved,scope", [
    ("y", True, ApprovalScope.ONCE),
    ("总是", True, ApprovalScope.SESSION),
    ("n", False, ApprovalScope.ONCE),
])
@pytest.mark.asyncio
async def test_tool_approval_answered_inline(config, answer, approved, scope):
    cli = _cli([], config)
    request = ToolApprovalRequest(session_id="worker-1", tool_name="write_file", tool_args={"path": "a.txt"})

    pending = asyncio.create_task(cli.prompt_tool_approval(request))
    await asyncio.sleep(0)
    cli._answer_approval("maybe")
    assert not pending.done()
    cli._answer_approval(answer)
    response = await pending

    assert response.approved is approved
    assert response.scope == scope
    assert cli._pending_approval is None
