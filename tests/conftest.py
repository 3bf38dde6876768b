"""Pytest configuration and shared fakes for all tests.

This file is automatically loaded by pytest and ensures proper test environment setup.
"""

import asyncio
import inspect
import sys
from pathlib import Path
from typing import Callable, List, Optional

import pytest

# Ensure project root is in PYTHONPATH for imports to work
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from agentTeam.models.config import MultiAgentConfig, RetryPolicy, WorkspaceStrategyType
from agentTeam.models.plan import OrchestrationPlan, WorkChunk
from agentTeam.transport.base import Session, TransportReply


class FakeTransport:
    """In-memory ChatTransport.

    ``responder(session, prompt)`` returns the reply text, an exception to
    raise, or an awaitable producing either.
    """

    def __init__(self, responder: Optional[Callable] = None):
        self.responder = responder or (lambda session, prompt: "ok")
        self.sessions = {}
        self.calls: List[tuple] = []
        self.terminated: List[str] = []

    def has_active_session(self, session_id: str) -> bool:
        return session_id in self.sessions

    async def terminate_session(self, session_id: str) -> None:
        self.sessions.pop(session_id, None)
        self.terminated.append(session_id)

    async def send_message(self, session: Session, prompt: str) -> TransportReply:
        self.sessions[session.session_id] = session
        self.calls.append((session, prompt))
        result = self.responder(session, prompt)
        if inspect.isawaitable(result):
            result = await result
        if isinstance(result, BaseException):
            raise result
        return TransportReply(content=result)

    def prompts_for(self, prefix: str) -> List[str]:
        return [prompt for session, prompt in self.calls if session.session_id.startswith(prefix)]


class ScriptedTeam:
    """Responder with a reply queue for the orchestrator and a function for workers."""

    def __init__(self, orchestrator_replies: List, worker: Optional[Callable] = None):
        self.orchestrator_replies = list(orchestrator_replies)
        self.worker = worker or (lambda session, prompt: f"done by {session.session_id}")

    def __call__(self, session: Session, prompt: str):
        if session.session_id.startswith("orchestrator-"):
            if not self.orchestrator_replies:
                return "{}"
            reply = self.orchestrator_replies.pop(0)
            return reply(prompt) if callable(reply) else reply
        return self.worker(session, prompt)


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Yield to the loop until ``predicate()`` holds."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


def make_chunk(chunk_id: str, deps=None, **kwargs) -> WorkChunk:
    return WorkChunk(
        chunk_id=chunk_id,
        title=kwargs.pop("title", f"Title {chunk_id}"),
        prompt=kwargs.pop("prompt", f"Do {chunk_id}"),
        depends_on_chunk_ids=list(deps or []),
        **kwargs,
    )


def make_plan(*chunks: WorkChunk, task: str = "task") -> OrchestrationPlan:
    return OrchestrationPlan(task_description=task, plan_summary="summary", chunks=list(chunks))


@pytest.fixture
def fake_transport():
    return FakeTransport()


@pytest.fixture
def config(tmp_path):
    """Fast config: in-memory workspace, no retries, no delays."""
    return MultiAgentConfig(
        max_parallel_sessions=3,
        workspace_strategy=WorkspaceStrategyType.IN_MEMORY,
        retry_policy=RetryPolicy(max_retries_per_chunk=0, abort_failure_threshold=10, retry_delay_seconds=0),
        orchestrator_model_id="orchestrator-model",
        working_directory=str(tmp_path),
        worker_timeout_seconds=5,
        orchestrator_llm_timeout_seconds=5,
    )
