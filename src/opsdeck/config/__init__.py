"""Configuration management for opsdeck.

Loads and validates YAML-based configuration with Pydantic models.
Supports environment variable overrides, including the runtime's own
OPENCLAW_BIN / OPENCLAW_HOME variables.
"""

from opsdeck.config.settings import Settings, load_settings

__all__ = ["Settings", "load_settings"]
