"""Runtime assembly for the orchestrator and its worker team."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from agentTeam.aggregation import ResultAggregator
from agentTeam.config.settings import Settings, get_settings
from agentTeam.events import EventBus
from agentTeam.execution import AgentPool
from agentTeam.hitl import ApprovalChecker, ApprovalQueue, InteractiveApprovalService
from agentTeam.hitl.approval_service import PromptCallback
from agentTeam.models.config import MultiAgentConfig, WorkspaceStrategyType
from agentTeam.orchestrator import OrchestratorService
from agentTeam.persistence import JsonlTaskLogStore
from agentTeam.planning import DependencyScheduler, TaskDecomposer
from agentTeam.roles import AgentRoleProvider
from agentTeam.tools import build_workspace_tools
from agentTeam.transport import ChatTransport, LangChainChatTransport
from agentTeam.workspace import WorkspaceStrategy, create_workspace_strategy

from .model_resolver import build_model_resolver

LOGGER = logging.getLogger(__name__)


@dataclass
class AgentTeamApplication:
    orchestrator: OrchestratorService
    config: MultiAgentConfig
    approval_queue: ApprovalQueue
    approval_service: InteractiveApprovalService
    log_store: JsonlTaskLogStore
    transport: ChatTransport
    events: EventBus


async def _select_workspace_strategy(config: MultiAgentConfig) -> WorkspaceStrategy:
    strategy = create_workspace_strategy(config.workspace_strategy)
    if await strategy.is_available(config.working_directory):
        return strategy

    if config.workspace_strategy == WorkspaceStrategyType.GIT_WORKTREE:
        LOGGER.warning(
            f"{config.working_directory} is not a git repository, "
            f"falling back to {WorkspaceStrategyType.FILE_LOCKING.value}"
        )
        config.workspace_strategy = WorkspaceStrategyType.FILE_LOCKING
        return create_workspace_strategy(WorkspaceStrategyType.FILE_LOCKING)

    raise RuntimeError(
        f"Workspace strategy {config.workspace_strategy.value} is unavailable for {config.working_directory}"
    )


async def build_orchestrator(
    prompt_callback: PromptCallback,
    settings: Optional[Settings] = None,
    transport: Optional[ChatTransport] = None,
    config: Optional[MultiAgentConfig] = None,
) -> AgentTeamApplication:
    """Wire every component of an orchestration run.

    Args:
        prompt_callback: Asks the human to approve a risky tool call
        settings: Application settings; defaults to the cached instance
        transport: Chat transport override (tests pass a fake)
        config: Run configuration; defaults to one built from ``settings``

    Returns:
        AgentTeamApplication holding the orchestrator and its collaborators
    """
    settings = settings or get_settings()
    config = config or MultiAgentConfig.from_settings(settings)
    events = EventBus()

    checker = ApprovalChecker(config_path=settings.approval_rules_path)
    approval_service = InteractiveApprovalService(
        prompt_callback,
        checker=checker,
        auto_approve_read_only=config.auto_approve_read_only_tools,
    )
    approval_queue = ApprovalQueue(approval_service, events=events)

    log_store = JsonlTaskLogStore(settings.observability.task_log_dir)
    log_store.prune_logs(settings.observability.task_log_retention_days)

    transport = transport or LangChainChatTransport(build_model_resolver(settings))
    role_provider = AgentRoleProvider(roles_path=settings.roles_path)
    workspace = await _select_workspace_strategy(config)
    LOGGER.info(f"Workspace strategy: {config.workspace_strategy.value}")

    pool = AgentPool(
        transport,
        role_provider,
        workspace,
        approval_queue=approval_queue,
        log_store=log_store,
        events=events,
        tool_factory=build_workspace_tools,
    )
    scheduler = DependencyScheduler()
    orchestrator = OrchestratorService(
        transport,
        pool,
        decomposer=TaskDecomposer(scheduler),
        scheduler=scheduler,
        aggregator=ResultAggregator(),
        log_store=log_store,
        events=events,
        config=config,
    )
    LOGGER.info(
        f"Orchestrator ready: model={config.orchestrator_model_id}, "
        f"worker_model={config.effective_worker_model_id}, max_parallel={config.max_parallel_sessions}"
    )
    return AgentTeamApplication(
        orchestrator=orchestrator,
        config=config,
        approval_queue=approval_queue,
        approval_service=approval_service,
        log_store=log_store,
        transport=transport,
        events=events,
    )
