"""Effective per-role worker configuration."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Optional

import yaml

from agentTeam.config.settings import DEFAULT_ROLES_PATH
from agentTeam.models.config import AgentRoleConfig, MultiAgentConfig
from agentTeam.models.plan import AgentRole

LOGGER = logging.getLogger(__name__)


def load_role_defaults(path: Optional[Path] = None) -> Dict[AgentRole, AgentRoleConfig]:
    """Load built-in role defaults from YAML.

    Unknown role names are skipped with a warning; missing roles get an
    empty config.
    """
    path = Path(path) if path else DEFAULT_ROLES_PATH
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    defaults: Dict[AgentRole, AgentRoleConfig] = {}
    for name, values in raw.items():
        try:
            role = AgentRole(name)
        except ValueError:
            LOGGER.warning(f"Ignoring unknown role '{name}' in {path}")
            continue
        values = dict(values or {})
        values["system_instructions"] = (values.get("system_instructions") or "").strip()
        defaults[role] = AgentRoleConfig(role=role, **values)

    for role in AgentRole:
        defaults.setdefault(role, AgentRoleConfig(role=role))
    return defaults


class AgentRoleProvider:
    """Resolves a role's effective config: defaults merged with user overrides.

    Override fields win only when non-empty.
    """

    def __init__(self, defaults: Optional[Dict[AgentRole, AgentRoleConfig]] = None, roles_path: Optional[Path] = None):
        self._defaults = defaults if defaults is not None else load_role_defaults(roles_path)

    @property
    def available_roles(self) -> list:
        return list(self._defaults)

    def get_default_role_config(self, role: AgentRole) -> AgentRoleConfig:
        return self._defaults.get(role) or AgentRoleConfig(role=role)

    def get_effective_role_config(self, role: AgentRole, config: MultiAgentConfig) -> AgentRoleConfig:
        default = self.get_default_role_config(role)
        override = config.role_configs.get(role)
        if override is None:
            return default
        return self._merge(default, override)

    def resolve_model_id(self, role: AgentRole, config: MultiAgentConfig) -> Optional[str]:
        """Role override, then worker model, then orchestrator model."""
        role_config = self.get_effective_role_config(role, config)
        return role_config.model_override or config.effective_worker_model_id

    @staticmethod
    def _merge(default: AgentRoleConfig, override: AgentRoleConfig) -> AgentRoleConfig:
        return AgentRoleConfig(
            role=default.role,
            description=override.description or default.description,
            system_instructions=override.system_instructions.strip() or default.system_instructions,
            preferred_tools=list(override.preferred_tools or default.preferred_tools),
            model_override=override.model_override or default.model_override,
            temperature_override=(
                override.temperature_override
                if override.temperature_override is not None
                else default.temperature_override
            ),
        )
