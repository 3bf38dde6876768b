"""Task decomposition and dependency scheduling."""

from .decomposer import (
    FALLBACK_CHUNK_ID,
    FALLBACK_SUMMARY,
    ChunkModel,
    PlanModel,
    TaskDecomposer,
    build_decomposition_prompt,
    fallback_plan,
)
from .scheduler import DependencyScheduler, DependencyValidationResult

__all__ = [
    "FALLBACK_CHUNK_ID",
    "FALLBACK_SUMMARY",
    "ChunkModel",
    "PlanModel",
    "TaskDecomposer",
    "build_decomposition_prompt",
    "fallback_plan",
    "DependencyScheduler",
    "DependencyValidationResult",
]
