"""Configuration package."""

from practice_core.config.settings import (
    Settings,
    get_settings,
    load_yaml_config,
    practice_languages,
    settings,
    yaml_config,
)

__all__ = [
    "Settings",
    "get_settings",
    "load_yaml_config",
    "practice_languages",
    "settings",
    "yaml_config",
]
