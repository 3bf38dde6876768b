"""Environment-bound configuration objects.

All settings classes load from environment variables and the project's .env
file via pydantic-settings. Use get_settings() for the cached instance.

Example:
    from agentTeam.config.settings import get_settings

    settings = get_settings()
    max_parallel = settings.orchestration.max_parallel_sessions
    model_id = settings.models.worker_model
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


load_dotenv()

PACKAGE_CONFIG_DIR = Path(__file__).parent
DEFAULT_ROLES_PATH = PACKAGE_CONFIG_DIR / "roles.yaml"
DEFAULT_APPROVAL_RULES_PATH = PACKAGE_CONFIG_DIR / "approval_rules.yaml"


class ModelSettings(BaseSettings):
    """Model identifiers and credentials for orchestrator and workers.

    Worker settings fall back to the orchestrator's when unset.
    """

    orchestrator_model: str = Field(
        default="gpt-4o",
        validation_alias=AliasChoices("AGENT_TEAM_ORCHESTRATOR_MODEL", "MODEL_CHAT", "MODEL_CHAT_ID"),
    )
    worker_model: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("AGENT_TEAM_WORKER_MODEL", "MODEL_BASE", "MODEL_BASE_ID"),
    )
    api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("AGENT_TEAM_API_KEY", "OPENAI_API_KEY", "MODEL_CHAT_API_KEY"),
    )
    base_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("AGENT_TEAM_BASE_URL", "OPENAI_BASE_URL", "MODEL_CHAT_URL"),
    )
    temperature: float = Field(default=0.2, ge=0.0, le=2.0, alias="AGENT_TEAM_TEMPERATURE")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


class OrchestrationSettings(BaseSettings):
    """Defaults for MultiAgentConfig.

    - max_parallel_sessions: worker concurrency cap (1-32, default: 5)
    - workspace_strategy: git_worktree | file_locking | in_memory
    - worker/orchestrator timeouts in seconds
    - retry policy values
    """

    max_parallel_sessions: int = Field(default=5, ge=1, le=32, alias="AGENT_TEAM_MAX_PARALLEL")
    workspace_strategy: str = Field(default="git_worktree", alias="AGENT_TEAM_WORKSPACE_STRATEGY")
    working_directory: str = Field(default=".", alias="AGENT_TEAM_WORKING_DIRECTORY")
    worker_timeout_seconds: float = Field(default=600.0, gt=0, alias="AGENT_TEAM_WORKER_TIMEOUT")
    orchestrator_timeout_seconds: float = Field(default=300.0, gt=0, alias="AGENT_TEAM_ORCHESTRATOR_TIMEOUT")
    max_retries_per_chunk: int = Field(default=2, ge=0, le=10, alias="AGENT_TEAM_MAX_RETRIES")
    abort_failure_threshold: int = Field(default=3, ge=1, alias="AGENT_TEAM_ABORT_THRESHOLD")
    retry_delay_seconds: float = Field(default=5.0, ge=0, alias="AGENT_TEAM_RETRY_DELAY")
    reprompt_on_retry: bool = Field(default=True, alias="AGENT_TEAM_REPROMPT_ON_RETRY")
    auto_approve_read_only_tools: bool = Field(default=True, alias="AGENT_TEAM_AUTO_APPROVE_READ_ONLY")
    maintain_follow_up_context: bool = Field(default=True, alias="AGENT_TEAM_FOLLOW_UP_CONTEXT")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


class ObservabilitySettings(BaseSettings):
    """Logging and task-log persistence configuration."""

    log_dir: str = Field(default="logs", alias="AGENT_TEAM_LOG_DIR")
    # one JSONL file per plan lives here
    task_log_dir: str = Field(default="data/orchestration_logs", alias="AGENT_TEAM_TASK_LOG_DIR")
    task_log_retention_days: int = Field(default=7, ge=1, alias="AGENT_TEAM_TASK_LOG_RETENTION_DAYS")
    log_prompt_max_length: int = Field(default=500, ge=100, le=5000, alias="LOG_PROMPT_MAX_LENGTH")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


class Settings(BaseSettings):
    """Root application settings.

    - models: Model ids and credentials (ModelSettings)
    - orchestration: Defaults for a task run (OrchestrationSettings)
    - observability: Logging and task logs (ObservabilitySettings)
    """

    environment: str = Field(default="dev", alias="APP_ENV")
    models: ModelSettings = Field(default_factory=ModelSettings)
    orchestration: OrchestrationSettings = Field(default_factory=OrchestrationSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)
    roles_path: Path = Field(default=DEFAULT_ROLES_PATH, alias="AGENT_TEAM_ROLES_PATH")
    approval_rules_path: Path = Field(default=DEFAULT_APPROVAL_RULES_PATH, alias="AGENT_TEAM_APPROVAL_RULES_PATH")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        validate_assignment=True,
        case_sensitive=False,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton Settings instance."""
    return Settings()
