"""Workspace isolation strategies."""

from agentTeam.models.config import WorkspaceStrategyType

from .base import WorkspaceStrategy
from .file_locking import FileLockingStrategy
from .git_worktree import GitCommandError, GitWorktreeStrategy, git_lock, run_git
from .in_memory import InMemoryStrategy

_STRATEGIES = {
    WorkspaceStrategyType.GIT_WORKTREE: GitWorktreeStrategy,
    WorkspaceStrategyType.FILE_LOCKING: FileLockingStrategy,
    WorkspaceStrategyType.IN_MEMORY: InMemoryStrategy,
}


def create_workspace_strategy(kind) -> WorkspaceStrategy:
    """Instantiate the strategy for ``kind`` (enum member or its string value)."""
    return _STRATEGIES[WorkspaceStrategyType(kind)]()


__all__ = [
    "WorkspaceStrategy",
    "FileLockingStrategy",
    "GitCommandError",
    "GitWorktreeStrategy",
    "InMemoryStrategy",
    "create_workspace_strategy",
    "git_lock",
    "run_git",
]
