"""Runtime configuration."""

from hub_mirror.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
