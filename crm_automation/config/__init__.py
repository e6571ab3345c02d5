"""Runtime configuration."""

from .settings import ConfigurationError, Settings, build_automations

__all__ = ["ConfigurationError", "Settings", "build_automations"]
