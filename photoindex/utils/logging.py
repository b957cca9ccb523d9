"""
Logging utilities for photoindex
Provides console/file handler setup and structured run logging
"""

import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import colorlog

DEFAULT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
COLOR_FORMAT = '%(log_color)s%(asctime)s - %(name)s - %(levelname)s%(reset)s - %(message)s'
LOG_COLORS = {
    'DEBUG': 'cyan',
    'INFO': 'green',
    'WARNING': 'yellow',
    'ERROR': 'red',
    'CRITICAL': 'red,bg_white',
}


class StructuredLogger:
    """Logger wrapper that appends JSON metadata to each message"""

    def __init__(self, name: str, metadata: Optional[Dict[str, Any]] = None):
        """
        Initialize structured logger

        Args:
            name: Logger name
            metadata: Default metadata included in every message
        """
        self.logger = logging.getLogger(name)
        self.metadata = metadata or {}

    def bind(self, **metadata) -> 'StructuredLogger':
        """New StructuredLogger with extra default metadata"""
        return StructuredLogger(self.logger.name, {**self.metadata, **metadata})

    def _format_message(self, message: str, **kwargs) -> str:
        data = {**self.metadata, **kwargs}
        if data:
            return f"{message} | {json.dumps(data, default=str, sort_keys=True)}"
        return message

    def debug(self, message: str, **kwargs):
        self.logger.debug(self._format_message(message, **kwargs))

    def info(self, message: str, **kwargs):
        self.logger.info(self._format_message(message, **kwargs))

    def warning(self, message: str, **kwargs):
        self.logger.warning(self._format_message(message, **kwargs))

    def error(self, message: str, **kwargs):
        self.logger.error(self._format_message(message, **kwargs))


def setup_logging(level: str = "INFO",
                  fmt: str = DEFAULT_FORMAT,
                  log_file: Optional[str] = None,
                  color: bool = True) -> logging.Logger:
    """
    Configure the root logger with a console handler and an optional file handler

    Calling it again replaces the handlers installed by a previous call.

    Args:
        level: Logging level name
        fmt: Format for the plain console and file handlers
        log_file: Optional path of a log file (parent directories are created)
        color: Use colorlog's ColoredFormatter when stderr is a terminal

    Returns:
        The configured root logger
    """
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        if getattr(handler, '_photoindex', False):
            root_logger.removeHandler(handler)
            handler.close()

    console_handler = logging.StreamHandler(sys.stderr)
    if color and sys.stderr.isatty():
        console_handler.setFormatter(colorlog.ColoredFormatter(COLOR_FORMAT, log_colors=LOG_COLORS))
    else:
        console_handler.setFormatter(logging.Formatter(fmt))
    console_handler._photoindex = True
    root_logger.addHandler(console_handler)

    if log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path)
        file_handler.setFormatter(logging.Formatter(fmt))
        file_handler._photoindex = True
        root_logger.addHandler(file_handler)

    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    return root_logger


def setup_logging_from_config(config: Dict, level: Optional[str] = None) -> logging.Logger:
    """setup_logging driven by the 'logging' config section; level overrides it"""
    section = config.get('logging', {})
    return setup_logging(
        level=level or section.get('level', 'INFO'),
        fmt=section.get('format', DEFAULT_FORMAT),
        log_file=section.get('file'),
        color=section.get('color', True),
    )
