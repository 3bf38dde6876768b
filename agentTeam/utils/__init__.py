"""Shared utilities."""

from .errors import (
    ConnectionLostError,
    CriticalStageFailure,
    InvalidPhaseError,
    InvalidPhaseTransitionError,
    InvalidStatusTransitionError,
    LlmTimeoutError,
    MergeConflictError,
    OrchestrationError,
    PlanValidationError,
    SchedulingInvariantError,
    WorkerFailure,
    WorkspaceError,
    handle_model_error,
)
from .text import extract_json_block, parse_json_object, truncate

__all__ = [
    "ConnectionLostError",
    "CriticalStageFailure",
    "InvalidPhaseError",
    "InvalidPhaseTransitionError",
    "InvalidStatusTransitionError",
    "LlmTimeoutError",
    "MergeConflictError",
    "OrchestrationError",
    "PlanValidationError",
    "SchedulingInvariantError",
    "WorkerFailure",
    "WorkspaceError",
    "handle_model_error",
    "extract_json_block",
    "parse_json_object",
    "truncate",
]
