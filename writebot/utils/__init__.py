"""
Utilities Module
================

Shared helpers:
- logger: context-aware console logging
- config: environment-backed configuration
"""

from writebot.utils.logger import Logger, logger
from writebot.utils.config import Config, ConfigurationError, get_config

__all__ = ["Logger", "logger", "Config", "ConfigurationError", "get_config"]
