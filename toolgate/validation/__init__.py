"""
Toolgate validation module.

This module provides configuration validation and schema enforcement.
"""

from toolgate.validation.config import Config, ConfigError, ToolgateConfig

__all__ = ["Config", "ConfigError", "ToolgateConfig"]
