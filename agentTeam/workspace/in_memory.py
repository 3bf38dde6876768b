"""No-isolation strategy for read-only work."""

from __future__ import annotations

import logging

from agentTeam.models.plan import WorkChunk
from agentTeam.workspace.base import WorkspaceStrategy

LOGGER = logging.getLogger(__name__)


class InMemoryStrategy(WorkspaceStrategy):
    """Workers share ``base_dir`` directly; nothing to merge or clean."""

    name = "in_memory"

    async def prepare(self, chunk: WorkChunk, base_dir: str) -> str:
        LOGGER.debug(f"In-memory workspace for chunk {chunk.chunk_id}: {base_dir}")
        return base_dir

    async def cleanup(self, workspace_path: str, chunk: WorkChunk) -> None:
        return None

    async def merge_results(self, workspace_path: str, base_dir: str, chunk: WorkChunk) -> None:
        return None

    async def is_available(self, base_dir: str) -> bool:
        return True
