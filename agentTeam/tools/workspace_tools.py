"""File and shell tools bound to one worker workspace.

Workers run concurrently in different workspaces, so tools are built per
worker by ``build_workspace_tools`` and close over that worker's root.
Paths are always relative to the root; traversal outside it is refused.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
from pathlib import Path
from typing import Annotated, List, Optional

from langchain_core.tools import BaseTool, tool

from agentTeam.workspace.git_worktree import git_lock

LOGGER = logging.getLogger(__name__)

MAX_READ_CHARS = 50_000
MAX_LIST_ENTRIES = 200
SKIPPED_DIRS = {".git", ".worktrees", "__pycache__", "node_modules", ".venv"}
_GIT_COMMAND = re.compile(r"(?:^|[;&|(]\s*)git\b")


def _resolve_inside(root: Path, relative: str) -> Optional[Path]:
    if not relative or relative.startswith("/") or ".." in Path(relative).parts:
        return None
    target = (root / relative).resolve()
    try:
        target.relative_to(root)
    except ValueError:
        return None
    return target


def build_workspace_tools(workspace_path: str) -> List[BaseTool]:
    """Create read_file / list_files / write_file / run_bash_command for ``workspace_path``."""
    root = Path(workspace_path).resolve()

    @tool
    def read_file(path: Annotated[str, "File path relative to the workspace root"]) -> str:
        """Read a text file from the workspace.

        Files larger than 50K characters are truncated with a notice.
        """
        target = _resolve_inside(root, path)
        if target is None:
            return f"Error: Access denied. Invalid path: {path}"
        if not target.is_file():
            return f"Error: File not found: {path}"
        try:
            content = target.read_text(encoding="utf-8")
        except UnicodeDecodeError:
            return f"Error: File is not a text file (binary content detected): {path}"
        LOGGER.info(f"Read file: {path} ({len(content)} chars)")
        if len(content) > MAX_READ_CHARS:
            return f"=== {path} (first {MAX_READ_CHARS:,} chars) ===\n{content[:MAX_READ_CHARS]}\n\n[...truncated...]"
        return f"=== {path} ===\n{content}"

    @tool
    def list_files(path: Annotated[str, "Directory relative to the workspace root, '.' for the root"] = ".") -> str:
        """List files under a workspace directory (recursive, VCS folders skipped)."""
        target = root if path in ("", ".") else _resolve_inside(root, path)
        if target is None:
            return f"Error: Access denied. Invalid path: {path}"
        if not target.is_dir():
            return f"Error: Not a directory: {path}"

        entries = []
        for dirpath, dirnames, filenames in os.walk(target):
            dirnames[:] = sorted(d for d in dirnames if d not in SKIPPED_DIRS)
            for name in sorted(filenames):
                entries.append(str((Path(dirpath) / name).relative_to(root)))
                if len(entries) >= MAX_LIST_ENTRIES:
                    entries.append(f"... (stopped after {MAX_LIST_ENTRIES} entries)")
                    return "\n".join(entries)
        return "\n".join(entries) or "(empty)"

    @tool
    def write_file(
        path: Annotated[str, "File path relative to the workspace root"],
        content: Annotated[str, "Full file content to write"],
    ) -> str:
        """Create or overwrite a file in the workspace."""
        target = _resolve_inside(root, path)
        if target is None:
            return f"Error: Access denied. Invalid path: {path}"
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
        LOGGER.info(f"Wrote file: {path} ({len(content)} chars)")
        return f"Wrote {len(content)} chars to {path}"

    @tool
    async def run_bash_command(
        command: Annotated[str, "Shell command to execute in the workspace root"],
        timeout: Annotated[int, "Timeout in seconds"] = 60,
    ) -> str:
        """Execute a shell command with the workspace as working directory.

        Commands that invoke git share the process-wide git lock with the
        worktree strategy.
        """
        LOGGER.info(f"Executing bash command in {root}: {command}")
        if _GIT_COMMAND.search(command.strip()):
            async with git_lock():
                return await _run_shell(command, root, timeout)
        return await _run_shell(command, root, timeout)

    return [read_file, list_files, write_file, run_bash_command]


async def _run_shell(command: str, cwd: Path, timeout: int) -> str:
    process = await asyncio.create_subprocess_shell(
        command,
        cwd=cwd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        return f"Error: Command timeout ({timeout}s)"
    except asyncio.CancelledError:
        if process.returncode is None:
            process.kill()
            await process.wait()
        raise

    output = stdout.decode("utf-8", errors="replace")
    if stderr:
        output += f"\n[stderr]\n{stderr.decode('utf-8', errors='replace')}"
    if process.returncode != 0:
        return f"Command failed (exit code {process.returncode}):\n{output}"
    return output or "Command completed (no output)"
