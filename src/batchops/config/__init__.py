"""Runtime configuration."""

from batchops.config.settings import Settings, settings

__all__ = ["Settings", "settings"]
