"""Error taxonomy for multi-agent orchestration."""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional

LOGGER = logging.getLogger(__name__)


class OrchestrationError(Exception):
    """Base exception for orchestration errors."""

    def __init__(self, message: str, user_message: str = None):
        super().__init__(message)
        self.user_message = user_message or message


class PlanValidationError(OrchestrationError):
    """Plan structure is invalid (duplicates, dangling refs, cycles)."""

    def __init__(self, errors: Iterable[str]):
        self.errors: List[str] = list(errors)
        super().__init__(
            "Plan validation failed: " + "; ".join(self.errors),
            user_message="The generated plan has an invalid dependency structure.",
        )


class SchedulingInvariantError(OrchestrationError):
    """Topological layering processed fewer chunks than the plan holds."""
    pass


class LlmTimeoutError(OrchestrationError):
    """Orchestrator LLM call exceeded its time budget on every attempt."""

    def __init__(self, timeout: float, attempts: int):
        self.timeout = timeout
        self.attempts = attempts
        super().__init__(
            f"Orchestrator LLM call timed out after {timeout:.0f}s ({attempts} attempts)",
            user_message=(
                f"Orchestrator LLM call timed out after {timeout:.0f}s. "
                "The task may be too complex or the connection was lost. Please try again."
            ),
        )


class ConnectionLostError(OrchestrationError):
    """Transport connection lost on every attempt; a full reset is required."""

    def __init__(self, attempts: int, cause_name: str = ""):
        self.attempts = attempts
        detail = f" ({cause_name})" if cause_name else ""
        super().__init__(
            f"Lost connection to the LLM service{detail} after {attempts} attempts",
            user_message=(
                f"Lost connection to the LLM service{detail}. "
                "Please reset the orchestrator and try again."
            ),
        )


class WorkerFailure(OrchestrationError):
    """A single chunk failed. Reported through results, not raised by the pool."""

    def __init__(self, chunk_id: str, message: str):
        self.chunk_id = chunk_id
        super().__init__(f"Chunk '{chunk_id}' failed: {message}", user_message=message)


class CriticalStageFailure(OrchestrationError):
    """A failed chunk has dependents in a later stage; remaining stages were aborted."""

    def __init__(self, failed_chunk_ids: List[str], blocked_chunk_ids: List[str]):
        self.failed_chunk_ids = list(failed_chunk_ids)
        self.blocked_chunk_ids = list(blocked_chunk_ids)
        super().__init__(
            f"Critical failure in {', '.join(self.failed_chunk_ids)}; "
            f"blocked: {', '.join(self.blocked_chunk_ids) or '-'}",
            user_message=(
                f"{len(self.failed_chunk_ids)} chunk(s) failed and "
                f"{len(self.blocked_chunk_ids)} dependent chunk(s) were skipped. "
                "Partial results were aggregated."
            ),
        )


class WorkspaceError(OrchestrationError):
    """Workspace preparation or maintenance failed."""
    pass


class MergeConflictError(WorkspaceError):
    """Merging a worker branch back failed; the merge was aborted."""

    def __init__(self, chunk_id: str, details: str):
        self.chunk_id = chunk_id
        self.details = details
        super().__init__(
            f"Merge of chunk '{chunk_id}' failed and was aborted: {details}",
            user_message=f"Changes from chunk '{chunk_id}' conflict with the base branch.",
        )


class InvalidPhaseError(OrchestrationError):
    """Operation called in a phase that does not accept it."""

    def __init__(self, operation: str, phase: str):
        self.operation = operation
        self.phase = phase
        super().__init__(f"Cannot {operation} in phase {phase}.")


class InvalidPhaseTransitionError(OrchestrationError):
    """State machine transition not in the allowed table."""

    def __init__(self, from_phase: str, to_phase: str):
        self.from_phase = from_phase
        self.to_phase = to_phase
        super().__init__(f"Illegal phase transition: {from_phase} -> {to_phase}")


class InvalidStatusTransitionError(OrchestrationError):
    """Chunk status regressed."""

    def __init__(self, chunk_id: str, from_status: str, to_status: str):
        self.chunk_id = chunk_id
        super().__init__(f"Chunk '{chunk_id}' cannot move from {from_status} to {to_status}")


def handle_model_error(error: Exception, default: Optional[str] = None) -> str:
    """Convert an exception into text suitable for showing to the user.

    Args:
        error: Exception raised somewhere below the orchestrator
        default: Text to use for unknown errors

    Returns:
        User-facing message
    """
    if isinstance(error, OrchestrationError):
        return error.user_message

    error_str = str(error).lower()
    if "rate limit" in error_str or "429" in error_str:
        return "Rate limit exceeded, please retry in a minute."
    if "api key" in error_str or "401" in error_str:
        return "API key is invalid or missing. Check your .env configuration."

    LOGGER.debug(f"Unclassified error surfaced to user: {type(error).__name__}: {error}")
    return default or f"Unexpected error: {type(error).__name__}"
