"""
Configuration for promptlab: settings loading and logging setup.
"""

from .logging_config import LOG_FORMAT, configure_logging
from .manager import SettingsManager

__all__ = [
    "SettingsManager",
    "configure_logging",
    "LOG_FORMAT",
]
