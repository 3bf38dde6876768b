"""Workspace isolation contract for workers."""

from __future__ import annotations

from abc import ABC, abstractmethod

from agentTeam.models.plan import WorkChunk


class WorkspaceStrategy(ABC):
    """Prepares, merges and cleans the directory a worker operates in.

    The strategy is the only arbiter of safe concurrent filesystem access;
    a worker touches nothing but the path returned by ``prepare``.
    """

    name: str = "base"

    @abstractmethod
    async def prepare(self, chunk: WorkChunk, base_dir: str) -> str:
        """Return the path the chunk's worker should use. May block (locks)."""
        pass

    @abstractmethod
    async def cleanup(self, workspace_path: str, chunk: WorkChunk) -> None:
        """Release whatever ``prepare`` acquired. Must not raise."""
        pass

    @abstractmethod
    async def merge_results(self, workspace_path: str, base_dir: str, chunk: WorkChunk) -> None:
        """Fold the worker's changes back into ``base_dir``."""
        pass

    @abstractmethod
    async def is_available(self, base_dir: str) -> bool:
        """Whether this strategy can operate on ``base_dir``."""
        pass
