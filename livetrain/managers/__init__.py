"""
Business logic managers for the LiveTrain package.

This module contains configuration management and the train data service.
"""

from .config_manager import ConfigData, ConfigManager, ConfigurationError
# Note: TrainDataService not imported here to avoid circular import with api_manager

__all__ = [
    "ConfigData",
    "ConfigManager",
    "ConfigurationError",
]
