"""Branch-per-chunk isolation using git worktrees."""

from __future__ import annotations

import asyncio
import logging
import re
import weakref
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Tuple

from agentTeam.models.plan import WorkChunk
from agentTeam.utils.errors import MergeConflictError, WorkspaceError
from agentTeam.workspace.base import WorkspaceStrategy

LOGGER = logging.getLogger(__name__)

BRANCH_PREFIX = "multi-agent"
WORKTREES_DIR = ".worktrees"

# One lock per event loop guards every git invocation in the process.
_GIT_LOCKS: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, asyncio.Lock]" = weakref.WeakKeyDictionary()


def git_lock() -> asyncio.Lock:
    loop = asyncio.get_running_loop()
    lock = _GIT_LOCKS.get(loop)
    if lock is None:
        lock = asyncio.Lock()
        _GIT_LOCKS[loop] = lock
    return lock


@dataclass
class GitResult:
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class GitCommandError(WorkspaceError):
    def __init__(self, args: Tuple[str, ...], result: GitResult):
        self.result = result
        super().__init__(f"git {' '.join(args)} failed ({result.returncode}): {result.stderr or result.stdout}")


def _safe_ref(chunk_id: str) -> str:
    return re.sub(r"[^A-Za-z0-9._-]", "-", chunk_id).strip(".-") or "chunk"


async def run_git(cwd: str, *args: str, check: bool = True) -> GitResult:
    """Run one git command. Cancellation kills the child before re-raising."""
    process = await asyncio.create_subprocess_exec(
        "git", *args,
        cwd=cwd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await process.communicate()
    except asyncio.CancelledError:
        if process.returncode is None:
            process.kill()
            await process.wait()
        raise

    result = GitResult(
        returncode=process.returncode,
        stdout=stdout.decode("utf-8", errors="replace").strip(),
        stderr=stderr.decode("utf-8", errors="replace").strip(),
    )
    if check and not result.ok:
        raise GitCommandError(args, result)
    return result


class GitWorktreeStrategy(WorkspaceStrategy):
    """Each chunk gets branch ``multi-agent/<chunk>`` checked out under ``.worktrees/``.

    Merging commits the worktree and runs ``merge --no-ff`` in the base
    checkout. A failed or cancelled merge is aborted, so the base branch
    is either fully merged or untouched.
    """

    name = "git_worktree"

    def __init__(self):
        # worktree path -> (base dir, branch)
        self._worktrees: Dict[str, Tuple[str, str]] = {}

    def branch_name(self, chunk: WorkChunk) -> str:
        return f"{BRANCH_PREFIX}/{_safe_ref(chunk.chunk_id)}"

    def worktree_path(self, chunk: WorkChunk, base_dir: str) -> str:
        return str(Path(base_dir).resolve() / WORKTREES_DIR / f"worker-{_safe_ref(chunk.chunk_id)}")

    async def prepare(self, chunk: WorkChunk, base_dir: str) -> str:
        base = str(Path(base_dir).resolve())
        branch = self.branch_name(chunk)
        path = self.worktree_path(chunk, base)

        async with git_lock():
            await self._exclude_worktrees_dir(base)

            if Path(path).exists():
                LOGGER.warning(f"Removing stale worktree {path}")
                await run_git(base, "worktree", "remove", "--force", path, check=False)
                await run_git(base, "worktree", "prune", check=False)

            result = await run_git(base, "worktree", "add", "-b", branch, path, "HEAD", check=False)
            if not result.ok:
                LOGGER.warning(f"worktree add failed for {branch} ({result.stderr}); deleting stale branch and retrying")
                await run_git(base, "branch", "-D", branch, check=False)
                await run_git(base, "worktree", "prune", check=False)
                await run_git(base, "worktree", "add", "-b", branch, path, "HEAD")

        self._worktrees[path] = (base, branch)
        LOGGER.info(f"Prepared worktree for chunk {chunk.chunk_id}: {path} on {branch}")
        return path

    async def merge_results(self, workspace_path: str, base_dir: str, chunk: WorkChunk) -> None:
        base = str(Path(base_dir).resolve())
        _, branch = self._worktrees.get(workspace_path, (base, self.branch_name(chunk)))

        async with git_lock():
            status = await run_git(workspace_path, "status", "--porcelain")
            if not status.stdout:
                LOGGER.info(f"No changes in worktree for chunk {chunk.chunk_id}; nothing to merge")
                return

            await run_git(workspace_path, "add", "-A")
            await run_git(workspace_path, "commit", "-m", f"[multi-agent] {chunk.title}")

            try:
                result = await run_git(
                    base, "merge", "--no-ff", branch, "-m", f"Merge multi-agent: {chunk.title}",
                    check=False,
                )
            except asyncio.CancelledError:
                await asyncio.shield(self._abort_merge(base))
                raise

            if not result.ok:
                await self._abort_merge(base)
                raise MergeConflictError(chunk.chunk_id, result.stderr or result.stdout)

        LOGGER.info(f"Merged {branch} into {base}")

    async def cleanup(self, workspace_path: str, chunk: WorkChunk) -> None:
        base, branch = self._worktrees.pop(workspace_path, (None, self.branch_name(chunk)))
        if base is None:
            # .worktrees/worker-x -> repository root
            base = str(Path(workspace_path).parent.parent)

        try:
            async with git_lock():
                removed = await run_git(base, "worktree", "remove", "--force", workspace_path, check=False)
                if not removed.ok:
                    LOGGER.warning(f"Failed to remove worktree {workspace_path}: {removed.stderr}")
                deleted = await run_git(base, "branch", "-D", branch, check=False)
                if not deleted.ok:
                    LOGGER.warning(f"Failed to delete branch {branch}: {deleted.stderr}")
        except OSError as e:
            LOGGER.warning(f"Worktree cleanup for chunk {chunk.chunk_id} failed: {e}")

    async def is_available(self, base_dir: str) -> bool:
        if not (Path(base_dir) / ".git").exists():
            return False
        try:
            result = await run_git(base_dir, "rev-parse", "--is-inside-work-tree", check=False)
        except OSError:
            return False
        return result.ok and result.stdout == "true"

    async def _abort_merge(self, base: str) -> None:
        result = await run_git(base, "merge", "--abort", check=False)
        if not result.ok:
            LOGGER.warning(f"git merge --abort in {base} failed: {result.stderr}")

    async def _exclude_worktrees_dir(self, base: str) -> None:
        git_dir = await run_git(base, "rev-parse", "--git-common-dir")
        exclude_file = (Path(base) / git_dir.stdout / "info" / "exclude").resolve()
        await asyncio.to_thread(self._append_exclude_entry, exclude_file, f"/{WORKTREES_DIR}/")

    @staticmethod
    def _append_exclude_entry(exclude_file: Path, entry: str) -> None:
        existing = exclude_file.read_text(encoding="utf-8") if exclude_file.exists() else ""
        if entry in existing.splitlines():
            return
        exclude_file.parent.mkdir(parents=True, exist_ok=True)
        with open(exclude_file, "a", encoding="utf-8") as f:
            if existing and not existing.endswith("\n"):
                f.write("\n")
            f.write(entry + "\n")
