"""
Configuration module for the conversion system.

ConfigManager loads environment-driven settings and Table Config files;
ProcessingDefaults holds every numeric default.
"""

from .processing_defaults import ProcessingDefaults
from .config_manager import ConfigManager, DatabaseConfig, ProcessingParameters, ConfigPaths

__all__ = [
    'ConfigManager',
    'DatabaseConfig',
    'ProcessingParameters',
    'ConfigPaths',
    'ProcessingDefaults',
]
