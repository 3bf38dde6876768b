"""Append-only JSONL task log, one file per plan."""

from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from collections import defaultdict
from pathlib import Path
from typing import Dict, List, Optional, Protocol, runtime_checkable

from pydantic import ValidationError

from agentTeam.models.logs import LogEntry, LogLevel

LOGGER = logging.getLogger(__name__)


@runtime_checkable
class TaskLogStore(Protocol):
    """Narrow sink used by workers and the orchestrator."""

    async def save_log_entry(self, plan_id: str, chunk_id: Optional[str], entry: LogEntry) -> None:
        ...


def _safe_file_stem(plan_id: str) -> str:
    return re.sub(r"[^A-Za-z0-9._-]", "_", plan_id) or "plan"


class JsonlTaskLogStore:
    """Writes ``<plan_id>.jsonl`` files under ``log_dir``.

    Appends to one plan are serialized by a per-plan lock; file I/O runs in a
    worker thread so the event loop never blocks on disk.
    """

    def __init__(self, log_dir: Path | str):
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def log_path(self, plan_id: str) -> Path:
        return self.log_dir / f"{_safe_file_stem(plan_id)}.jsonl"

    async def save_log_entry(self, plan_id: str, chunk_id: Optional[str], entry: LogEntry) -> None:
        if chunk_id and not entry.chunk_id:
            entry = entry.model_copy(update={"chunk_id": chunk_id})
        line = entry.to_json_line() + "\n"
        path = self.log_path(plan_id)
        async with self._locks[plan_id]:
            await asyncio.to_thread(self._append, path, line)

    @staticmethod
    def _append(path: Path, line: str) -> None:
        with open(path, "a", encoding="utf-8") as f:
            f.write(line)

    # ========== Queries ==========

    async def get_plan_logs(self, plan_id: str) -> List[LogEntry]:
        path = self.log_path(plan_id)
        async with self._locks[plan_id]:
            return await asyncio.to_thread(self._read_entries, path)

    async def get_chunk_logs(self, plan_id: str, chunk_id: str) -> List[LogEntry]:
        return [e for e in await self.get_plan_logs(plan_id) if e.chunk_id == chunk_id]

    async def get_logs_by_level(self, plan_id: str, min_level: LogLevel) -> List[LogEntry]:
        order = list(LogLevel)
        threshold = order.index(min_level)
        return [e for e in await self.get_plan_logs(plan_id) if order.index(e.level) >= threshold]

    async def get_timeline(self, plan_id: str) -> List[LogEntry]:
        """All entries of a plan ordered by timestamp (stable for equal stamps)."""
        return sorted(await self.get_plan_logs(plan_id), key=lambda e: e.timestamp)

    async def export_plan_logs_as_json(self, plan_id: str) -> str:
        entries = await self.get_timeline(plan_id)
        return json.dumps(
            [e.model_dump(mode="json", by_alias=True, exclude_none=True) for e in entries],
            ensure_ascii=False,
            indent=2,
        )

    def list_plan_ids(self) -> List[str]:
        return sorted(p.stem for p in self.log_dir.glob("*.jsonl"))

    def prune_logs(self, max_age_days: float) -> int:
        """Delete plan logs not modified within ``max_age_days``.

        Returns:
            Number of files deleted
        """
        cutoff = time.time() - max_age_days * 86400
        deleted = 0
        for path in self.log_dir.glob("*.jsonl"):
            try:
                if path.stat().st_mtime < cutoff:
                    path.unlink()
                    deleted += 1
            except OSError as e:
                LOGGER.warning(f"Failed to prune task log {path}: {e}")
        if deleted:
            LOGGER.info(f"Pruned {deleted} task log(s) older than {max_age_days} days")
        return deleted

    @staticmethod
    def _read_entries(path: Path) -> List[LogEntry]:
        if not path.exists():
            return []
        entries = []
        with open(path, "r", encoding="utf-8") as f:
            for line_no, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    entries.append(LogEntry.model_validate_json(line))
                except ValidationError as e:
                    LOGGER.warning(f"Skipping malformed log line {path.name}:{line_no}: {e.error_count()} error(s)")
        return entries
