"""Orchestrator state machine and its helpers."""

from .prompts import (
    ORCHESTRATOR_SYSTEM_PROMPT,
    DecisionAction,
    OrchestratorDecision,
    build_enriched_task,
    build_evaluation_prompt,
    build_resolved_prompts,
    parse_orchestrator_decision,
)
from .resilience import call_with_reconnect
from .service import PHASE_TRANSITIONS, OrchestratorService, find_critical_failures

__all__ = [
    "ORCHESTRATOR_SYSTEM_PROMPT",
    "DecisionAction",
    "OrchestratorDecision",
    "build_enriched_task",
    "build_evaluation_prompt",
    "build_resolved_prompts",
    "parse_orchestrator_decision",
    "call_with_reconnect",
    "PHASE_TRANSITIONS",
    "OrchestratorService",
    "find_critical_failures",
]
