"""Configuration module for phi-guard."""

from phi_guard.config.base import Settings
from phi_guard.config.loader import get_settings, reload_settings

__all__ = ["Settings", "get_settings", "reload_settings"]
