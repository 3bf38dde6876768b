"""Per-task configuration models."""

from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from agentTeam.models.plan import AgentRole


class WorkspaceStrategyType(str, Enum):
    GIT_WORKTREE = "git_worktree"
    FILE_LOCKING = "file_locking"
    IN_MEMORY = "in_memory"


class RetryPolicy(BaseModel):
    """How failed chunks are retried within one batch."""

    max_retries_per_chunk: int = Field(default=2, ge=0, le=10)
    # once this many chunks of a batch have failed, the rest are skipped
    abort_failure_threshold: int = Field(default=3, ge=1)
    reprompt_on_retry: bool = True
    retry_delay_seconds: float = Field(default=5.0, ge=0)


class AgentRoleConfig(BaseModel):
    """Effective configuration for workers of one role."""

    role: AgentRole = AgentRole.GENERIC
    description: str = ""
    system_instructions: str = ""
    preferred_tools: List[str] = Field(default_factory=list)
    model_override: Optional[str] = None
    temperature_override: Optional[float] = Field(default=None, ge=0.0, le=2.0)


class MultiAgentConfig(BaseModel):
    """Configuration for one orchestration run."""

    max_parallel_sessions: int = Field(default=5, ge=1)
    workspace_strategy: WorkspaceStrategyType = WorkspaceStrategyType.GIT_WORKTREE
    retry_policy: RetryPolicy = Field(default_factory=RetryPolicy)
    orchestrator_model_id: Optional[str] = None
    worker_model_id: Optional[str] = None
    working_directory: str = "."
    auto_approve_read_only_tools: bool = True
    worker_timeout_seconds: float = Field(default=600.0, gt=0)
    orchestrator_llm_timeout_seconds: float = Field(default=300.0, gt=0)
    maintain_follow_up_context: bool = True
    role_configs: Dict[AgentRole, AgentRoleConfig] = Field(default_factory=dict)

    @property
    def effective_worker_model_id(self) -> Optional[str]:
        return self.worker_model_id or self.orchestrator_model_id

    @classmethod
    def from_settings(cls, settings=None, **overrides) -> "MultiAgentConfig":
        """Build a config from environment settings; keyword overrides win."""
        if settings is None:
            from agentTeam.config.settings import get_settings

            settings = get_settings()

        orch = settings.orchestration
        values = {
            "max_parallel_sessions": orch.max_parallel_sessions,
            "workspace_strategy": WorkspaceStrategyType(orch.workspace_strategy),
            "retry_policy": RetryPolicy(
                max_retries_per_chunk=orch.max_retries_per_chunk,
                abort_failure_threshold=orch.abort_failure_threshold,
                reprompt_on_retry=orch.reprompt_on_retry,
                retry_delay_seconds=orch.retry_delay_seconds,
            ),
            "orchestrator_model_id": settings.models.orchestrator_model,
            "worker_model_id": settings.models.worker_model,
            "working_directory": orch.working_directory,
            "auto_approve_read_only_tools": orch.auto_approve_read_only_tools,
            "worker_timeout_seconds": orch.worker_timeout_seconds,
            "orchestrator_llm_timeout_seconds": orch.orchestrator_timeout_seconds,
            "maintain_follow_up_context": orch.maintain_follow_up_context,
        }
        values.update(overrides)
        return cls(**values)
