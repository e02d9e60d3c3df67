"""Configuration management for thoughtcast.

Loads and validates YAML-based configuration with Pydantic models.
Supports environment variable overrides for secrets like API keys
and the broadcast stream key.
"""

from thoughtcast.config.settings import Settings, load_settings

__all__ = ["Settings", "load_settings"]
