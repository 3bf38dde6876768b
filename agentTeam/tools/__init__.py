"""Tools exposed to worker sessions."""

from .workspace_tools import build_workspace_tools

__all__ = ["build_workspace_tools"]
