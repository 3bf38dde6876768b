"""Configuration package."""

from .settings import (
    DEFAULT_APPROVAL_RULES_PATH,
    DEFAULT_ROLES_PATH,
    ModelSettings,
    ObservabilitySettings,
    OrchestrationSettings,
    Settings,
    get_settings,
)

__all__ = [
    "DEFAULT_APPROVAL_RULES_PATH",
    "DEFAULT_ROLES_PATH",
    "ModelSettings",
    "ObservabilitySettings",
    "OrchestrationSettings",
    "Settings",
    "get_settings",
]
