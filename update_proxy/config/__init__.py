"""Configuration package for runtime settings and startup validation."""

from .settings import RunnerSettings, SettingsLoadError, config_load_settings

__all__ = ["RunnerSettings", "SettingsLoadError", "config_load_settings"]
