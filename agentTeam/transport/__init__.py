"""LLM chat transport contract and adapters."""

from .base import (
    ChatTransport,
    Session,
    ToolApprovalHandler,
    TransportConnectionError,
    TransportFailureKind,
    TransportReply,
    classify_transport_error,
)
from .langchain_transport import LangChainChatTransport, message_text

__all__ = [
    "ChatTransport",
    "Session",
    "ToolApprovalHandler",
    "TransportConnectionError",
    "TransportFailureKind",
    "TransportReply",
    "classify_transport_error",
    "LangChainChatTransport",
    "message_text",
]
