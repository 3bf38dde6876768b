"""Aggregated report models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List

from agentTeam.models.plan import AgentResult, utcnow


@dataclass
class OrchestrationStats:
    total_chunks: int = 0
    succeeded_chunks: int = 0
    failed_chunks: int = 0
    retried_chunks: int = 0
    skipped_chunks: int = 0
    aborted_chunks: int = 0
    # wall-clock seconds for the whole run; worker durations are summed separately
    total_duration: float = 0.0
    total_worker_time: float = 0.0


@dataclass(frozen=True)
class ConsolidatedReport:
    """Final output of one orchestration run. Read-only after creation."""

    plan_id: str
    conversational_summary: str
    worker_results: List[AgentResult]
    stats: OrchestrationStats
    next_steps: List[str] = field(default_factory=list)
    used_fallback: bool = False
    completed_at_utc: datetime = field(default_factory=utcnow)
