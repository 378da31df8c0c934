"""
Core module for MediLink

Contains configuration management and logging setup shared by
the tracking services.
"""

from .config import ConfigurationManager, ConfigurationError
from .logging import initialize_logging, get_logger, get_structured_logger

__all__ = [
    'ConfigurationManager',
    'ConfigurationError',
    'initialize_logging',
    'get_logger',
    'get_structured_logger'
]
