"""Tests for the per-workspace file and shell tools."""

import asyncio
import shutil

import pytest

from agentTeam.tools import build_workspace_tools
from agentTeam.workspace import git_lock


@pytest.fixture
def tools(tmp_path):
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "app.py").write_text("print('hi')\n", encoding="utf-8")
    (tmp_path / ".git").mkdir()
    (tmp_path / ".git" / "HEAD").write_text("ref: refs/heads/main\n", encoding="utf-8")
    return {t.name: t for t in build_workspace_tools(str(tmp_path))}


def test_tool_names(tools):
    assert set(tools) == {"read_file", "list_files", "write_file", "run_bash_command"}


def test_read_file(tools):
    assert tools["read_file"].invoke({"path": "src/app.py"}) == "=== src/app.py ===\nprint('hi')\n"
    assert tools["read_file"].invoke({"path": "nope.txt"}) == "Error: File not found: nope.txt"


@pytest.mark.parametrize("path", ["../outside.txt", "/etc/passwd", "src/../../x"])
def test_paths_outside_workspace_are_refused(tools, path):
    assert tools["read_file"].invoke({"path": path}).startswith("Error: Access denied")
    assert tools["write_file"].invoke({"path": path, "content": "x"}).startswith("Error: Access denied")


def test_list_files_skips_vcs_dirs(tools):
    listing = tools["list_files"].invoke({})
    assert listing.splitlines() == ["src/app.py"]


def test_write_then_read(tools, tmp_path):
    assert tools["write_file"].invoke({"path": "docs/notes.md", "content": "hello"}) == "Wrote 5 chars to docs/notes.md"
    assert (tmp_path / "docs" / "notes.md").read_text(encoding="utf-8") == "hello"


@pytest.mark.asyncio
async def test_bash_runs_in_workspace(tools):
    bash = tools["run_bash_command"]
    assert (await bash.ainvoke({"command": "ls src"})).strip() == "app.py"
    failed = await bash.ainvoke({"command": "exit 3"})
    assert failed.startswith("Command failed (exit code 3):")
    assert await bash.ainvoke({"command": "true"}) == "Command completed (no output)"
    assert await bash.ainvoke({"command": "sleep 5", "timeout": 1}) == "Error: Command timeout (1s)"


@pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")
@pytest.mark.asyncio
async def test_git_commands_wait_for_the_git_lock(tools):
    bash = tools["run_bash_command"]

    async with git_lock():
        git_call = asyncio.create_task(bash.ainvoke({"command": "true && git --version"}))
        assert await bash.ainvoke({"command": "echo plain"}) == "plain\n"
        await asyncio.sleep(0.1)
        assert not git_call.done()

    assert "git version" in await asyncio.wait_for(git_call, 10)
