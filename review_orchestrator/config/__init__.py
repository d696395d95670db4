"""Configuration module for the review orchestrator."""

from review_orchestrator.config.settings import (
    ModeProfile,
    Settings,
    get_settings,
    load_settings_from_yaml,
)

__all__ = ["ModeProfile", "Settings", "get_settings", "load_settings_from_yaml"]
