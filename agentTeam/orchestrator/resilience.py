"""Bounded retry with session recreation for orchestrator LLM calls."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from agentTeam.transport.base import TransportFailureKind, classify_transport_error
from agentTeam.utils.errors import ConnectionLostError, LlmTimeoutError

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

RetryCallback = Callable[[TransportFailureKind, int, BaseException], None]

_RETRYABLE = (TransportFailureKind.TIMEOUT, TransportFailureKind.CONNECTION_LOST)


async def call_with_reconnect(
    send: Callable[[], Awaitable[T]],
    recreate: Callable[[], Awaitable[None]],
    timeout: float,
    max_attempts: int = 2,
    on_retry: Optional[RetryCallback] = None,
) -> T:
    """Run ``send`` under ``timeout``; on timeout or connection loss recreate and resend.

    ``send`` is invoked afresh on every attempt so it picks up the session
    created by ``recreate``. Errors that are neither timeouts nor connection
    losses propagate unchanged, as does cancellation.

    Args:
        send: Performs one call against the current session
        recreate: Tears down and rebuilds the remote session
        timeout: Per-attempt budget in seconds
        max_attempts: Total attempts, including the first
        on_retry: Notified before each recreate with (kind, attempt, error)

    Returns:
        Whatever ``send`` returned

    Raises:
        LlmTimeoutError: Every attempt timed out (or the last one did)
        ConnectionLostError: The last attempt lost the connection; caller must reset
    """
    attempts = max(1, max_attempts)
    for attempt in range(1, attempts + 1):
        try:
            return await asyncio.wait_for(send(), timeout=timeout)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            kind = classify_transport_error(e)
            if kind not in _RETRYABLE:
                raise

            LOGGER.warning(
                f"Orchestrator LLM call failed ({kind.value}, attempt {attempt}/{attempts}): "
                f"{type(e).__name__}: {e}"
            )
            if attempt >= attempts:
                if kind == TransportFailureKind.TIMEOUT:
                    raise LlmTimeoutError(timeout, attempt) from e
                raise ConnectionLostError(attempt, type(e).__name__) from e

            if on_retry is not None:
                on_retry(kind, attempt, e)
            await recreate()

    # unreachable: the loop either returns or raises
    raise RuntimeError("call_with_reconnect exhausted without a result")
