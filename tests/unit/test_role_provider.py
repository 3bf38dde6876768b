"""Tests for AgentRoleProvider defaults and overrides."""

import pytest

from agentTeam.models.config import AgentRoleConfig, MultiAgentConfig
from agentTeam.models.plan import AgentRole
from agentTeam.roles import AgentRoleProvider, load_role_defaults


@pytest.fixture
def provider():
    return AgentRoleProvider()


def test_every_role_has_a_default(provider):
    assert set(provider.available_roles) == set(AgentRole)
    assert provider.get_default_role_config(AgentRole.CODE_ANALYSIS).system_instructions
    assert provider.get_default_role_config(AgentRole.GENERIC).system_instructions == ""


def test_without_override_returns_default(provider):
    config = MultiAgentConfig()
    effective = provider.get_effective_role_config(AgentRole.TESTING, config)
    assert effective == provider.get_default_role_config(AgentRole.TESTING)


def test_non_empty_override_fields_win(provider):
    default = provider.get_default_role_config(AgentRole.CODE_ANALYSIS)
    config = MultiAgentConfig(role_configs={
        AgentRole.CODE_ANALYSIS: AgentRoleConfig(
            role=AgentRole.CODE_ANALYSIS,
            system_instructions="   ",
            model_override="special-model",
            temperature_override=0.7,
        ),
    })
    effective = provider.get_effective_role_config(AgentRole.CODE_ANALYSIS, config)

    assert effective.system_instructions == default.system_instructions
    assert effective.description == default.description
    assert effective.model_override == "special-model"
    assert effective.temperature_override == 0.7


def test_model_resolution_order(provider):
    config = MultiAgentConfig(orchestrator_model_id="orch", worker_model_id=None)
    assert provider.resolve_model_id(AgentRole.GENERIC, config) == "orch"

    config = MultiAgentConfig(orchestrator_model_id="orch", worker_model_id="worker")
    assert provider.resolve_model_id(AgentRole.GENERIC, config) == "worker"

    config.role_configs[AgentRole.GENERIC] = AgentRoleConfig(model_override="role-model")
    assert provider.resolve_model_id(AgentRole.GENERIC, config) == "role-model"


def test_unknown_roles_in_file_are_skipped(tmp_path):
    path = tmp_path / "roles.yaml"
    path.write_text("Testing:\n  description: custom\n  system_instructions: |\n    Test hard.\nWizard:\n  description: x\n")
    defaults = load_role_defaults(path)
    assert defaults[AgentRole.TESTING].description == "custom"
    assert defaults[AgentRole.TESTING].system_instructions == "Test hard."
    assert defaults[AgentRole.GENERIC] == AgentRoleConfig(role=AgentRole.GENERIC)
