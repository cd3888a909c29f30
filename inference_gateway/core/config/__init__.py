"""
Configuration Module

Centralized, type-safe configuration for the inference gateway.

Components:
-----------
- **settings.py**: Pydantic-based configuration with environment variable loading
- **constants.py**: Enums, store key prefixes and header names
"""

from inference_gateway.core.config.settings import Settings, get_settings, reload_settings

__all__ = ["Settings", "get_settings", "reload_settings"]
