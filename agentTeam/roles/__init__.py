"""Worker role configuration."""

from .provider import AgentRoleProvider, load_role_defaults

__all__ = ["AgentRoleProvider", "load_role_defaults"]
