"""Result aggregation and next-step extraction."""

from .aggregator import (
    ResultAggregator,
    build_fallback_summary,
    build_synthesis_prompt,
    compute_stats,
)
from .next_steps import extract_next_steps, strip_action_markers

__all__ = [
    "ResultAggregator",
    "build_fallback_summary",
    "build_synthesis_prompt",
    "compute_stats",
    "extract_next_steps",
    "strip_action_markers",
]
