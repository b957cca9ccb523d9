"""
photoindex utilities module.
"""

from .logging import StructuredLogger, setup_logging, setup_logging_from_config

__all__ = [
    'StructuredLogger',
    'setup_logging',
    'setup_logging_from_config',
]
