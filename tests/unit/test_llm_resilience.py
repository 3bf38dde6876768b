"""Tests for call_with_reconnect and transport error classification."""

import asyncio

import httpx
import pytest

from agentTeam.orchestrator.resilience import call_with_reconnect
from agentTeam.transport.base import TransportConnectionError, TransportFailureKind, classify_transport_error
from agentTeam.utils.errors import ConnectionLostError, LlmTimeoutError


@pytest.mark.parametrize("error,kind", [
    (asyncio.TimeoutError(), TransportFailureKind.TIMEOUT),
    (httpx.ReadTimeout("slow"), TransportFailureKind.TIMEOUT),
    (httpx.ConnectError("refused"), TransportFailureKind.CONNECTION_LOST),
    (TransportConnectionError("gone"), TransportFailureKind.CONNECTION_LOST),
    (ValueError("bad"), TransportFailureKind.OTHER),
])
def test_classification(error, kind):
    assert classify_transport_error(error) == kind


def test_classification_follows_cause_chain():
    try:
        try:
            raise httpx.RemoteProtocolError("eof")
        except httpx.RemoteProtocolError as inner:
            raise RuntimeError("wrapped") from inner
    except RuntimeError as outer:
        assert classify_transport_error(outer) == TransportFailureKind.CONNECTION_LOST


class _Recorder:
    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.sends = 0
        self.recreates = 0
        self.retries = []

    async def send(self):
        self.sends += 1
        outcome = self.outcomes.pop(0)
        if outcome == "hang":
            await asyncio.sleep(10)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def recreate(self):
        self.recreates += 1

    def on_retry(self, kind, attempt, error):
        self.retries.append((kind, attempt))


@pytest.mark.asyncio
async def test_success_on_first_attempt():
    rec = _Recorder(["hello"])
    assert await call_with_reconnect(rec.send, rec.recreate, timeout=1) == "hello"
    assert rec.recreates == 0


@pytest.mark.asyncio
async def test_timeout_then_success_recreates_once():
    rec = _Recorder(["hang", "second"])
    result = await call_with_reconnect(rec.send, rec.recreate, timeout=0.05, on_retry=rec.on_retry)
    assert result == "second"
    assert rec.recreates == 1
    assert rec.retries == [(TransportFailureKind.TIMEOUT, 1)]


@pytest.mark.asyncio
async def test_repeated_timeout_raises_llm_timeout():
    rec = _Recorder(["hang", "hang"])
    with pytest.raises(LlmTimeoutError) as exc_info:
        await call_with_reconnect(rec.send, rec.recreate, timeout=0.05)
    assert exc_info.value.attempts == 2
    assert "timed out" in exc_info.value.user_message
    assert rec.sends == 2


@pytest.mark.asyncio
async def test_connection_loss_raises_after_retry():
    rec = _Recorder([TransportConnectionError("a"), TransportConnectionError("b")])
    with pytest.raises(ConnectionLostError) as exc_info:
        await call_with_reconnect(rec.send, rec.recreate, timeout=1)
    assert "reset" in exc_info.value.user_message
    assert rec.recreates == 1


@pytest.mark.asyncio
async def test_other_errors_propagate_without_retry():
    rec = _Recorder([ValueError("bad prompt")])
    with pytest.raises(ValueError):
        await call_with_reconnect(rec.send, rec.recreate, timeout=1)
    assert rec.sends == 1
    assert rec.recreates == 0


@pytest.mark.asyncio
async def test_cancellation_is_not_retried():
    rec = _Recorder(["hang", "unused"])
    task = asyncio.create_task(call_with_reconnect(rec.send, rec.recreate, timeout=5))
    await asyncio.sleep(0.02)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert rec.sends == 1
    assert rec.recreates == 0
