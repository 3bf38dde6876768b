"""Chat transport contract consumed by the orchestrator and workers."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, runtime_checkable

import httpx

from agentTeam.models.plan import utcnow

# (tool_name, tool_args, tool_call_id) -> approved?
ToolApprovalHandler = Callable[[str, Dict[str, Any], Optional[str]], Awaitable[bool]]


@dataclass
class Session:
    """Remote chat session bound to a working directory and a model."""

    session_id: str
    display_name: str = ""
    model_id: Optional[str] = None
    working_directory: Optional[str] = None
    system_prompt: Optional[str] = None
    temperature: Optional[float] = None
    tools: List[Any] = field(default_factory=list)
    approval_handler: Optional[ToolApprovalHandler] = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class TransportReply:
    content: str
    timestamp: datetime = field(default_factory=utcnow)


@runtime_checkable
class ChatTransport(Protocol):
    """Opaque session + prompt -> text call. Fallible and cancellable."""

    async def send_message(self, session: Session, prompt: str) -> TransportReply:
        ...

    def has_active_session(self, session_id: str) -> bool:
        ...

    async def terminate_session(self, session_id: str) -> None:
        ...


class TransportConnectionError(ConnectionError):
    """Transport lost its connection to the LLM backend."""
    pass


class TransportFailureKind(str, Enum):
    TIMEOUT = "timeout"
    CONNECTION_LOST = "connection_lost"
    CANCELLED = "cancelled"
    OTHER = "other"


_TIMEOUT_TYPES = (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException)
_CONNECTION_TYPES = (ConnectionError, httpx.TransportError, EOFError)


def classify_transport_error(error: BaseException) -> TransportFailureKind:
    """Tag a transport failure by exception type, following ``__cause__`` links.

    Timeouts are checked first: httpx.TimeoutException is an httpx.TransportError.
    """
    seen = set()
    current: Optional[BaseException] = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, asyncio.CancelledError):
            return TransportFailureKind.CANCELLED
        if isinstance(current, _TIMEOUT_TYPES):
            return TransportFailureKind.TIMEOUT
        if isinstance(current, _CONNECTION_TYPES):
            return TransportFailureKind.CONNECTION_LOST
        current = current.__cause__
    return TransportFailureKind.OTHER
