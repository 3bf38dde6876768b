"""Shared-directory strategy with one exclusive lock per working scope."""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Dict, Tuple

from agentTeam.models.plan import WorkChunk
from agentTeam.workspace.base import WorkspaceStrategy

LOGGER = logging.getLogger(__name__)


def normalize_scope(base_dir: str, working_scope: str = None) -> str:
    """Absolute, case-folded path of the chunk's scope (whole dir when unscoped)."""
    target = Path(base_dir)
    if working_scope:
        target = target / working_scope
    return os.path.normcase(os.path.abspath(target)).rstrip("/\\").casefold()


class FileLockingStrategy(WorkspaceStrategy):
    """All workers share ``base_dir``; chunks with the same scope run one at a time.

    Waiting for a lock is cancellable. The lock is held from ``prepare``
    until ``cleanup``.
    """

    name = "file_locking"

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        # chunk_id -> (scope key, lock) currently held
        self._held: Dict[str, Tuple[str, asyncio.Lock]] = {}

    async def prepare(self, chunk: WorkChunk, base_dir: str) -> str:
        scope_key = normalize_scope(base_dir, chunk.working_scope)
        lock = self._locks.setdefault(scope_key, asyncio.Lock())

        if lock.locked():
            LOGGER.info(f"Chunk {chunk.chunk_id} waiting for scope lock {scope_key}")
        await lock.acquire()
        self._held[chunk.chunk_id] = (scope_key, lock)
        LOGGER.debug(f"Chunk {chunk.chunk_id} acquired scope lock {scope_key}")
        return base_dir

    async def cleanup(self, workspace_path: str, chunk: WorkChunk) -> None:
        held = self._held.pop(chunk.chunk_id, None)
        if held is None:
            return
        scope_key, lock = held
        if lock.locked():
            lock.release()
        LOGGER.debug(f"Chunk {chunk.chunk_id} released scope lock {scope_key}")

    async def merge_results(self, workspace_path: str, base_dir: str, chunk: WorkChunk) -> None:
        return None

    async def is_available(self, base_dir: str) -> bool:
        return Path(base_dir).is_dir()

    def is_scope_locked(self, base_dir: str, working_scope: str = None) -> bool:
        lock = self._locks.get(normalize_scope(base_dir, working_scope))
        return lock is not None and lock.locked()
