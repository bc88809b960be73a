"""Configuration package."""

from doratrack.config.settings import Settings, settings

__all__ = ["Settings", "settings"]
