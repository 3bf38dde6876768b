"""Runtime assembly."""

from .app import AgentTeamApplication, build_orchestrator
from .model_resolver import build_model_resolver

__all__ = ["AgentTeamApplication", "build_orchestrator", "build_model_resolver"]
