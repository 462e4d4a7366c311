"""Configuration module: environment settings and the runtime provider chain."""

from src.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
