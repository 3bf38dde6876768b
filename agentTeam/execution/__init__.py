"""Worker execution: single-use workers and the bounded pool."""

from .pool import ABORT_THRESHOLD_MESSAGE, AgentPool, build_retry_prompt
from .worker import CANCELLED_MESSAGE, WorkerAgent

__all__ = [
    "ABORT_THRESHOLD_MESSAGE",
    "AgentPool",
    "build_retry_prompt",
    "CANCELLED_MESSAGE",
    "WorkerAgent",
]
