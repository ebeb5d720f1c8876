"""
Logging configuration for the deployment tooling.

The CLI, the stack deployment wrappers and the AWS service layer all log
through get_logger, so one --log-level flag or LOG_LEVEL variable controls
every module.
"""
import logging
import os
import sys
from typing import Set

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

_configured: Set[str] = set()


def _level_from_environment() -> int:
    return getattr(logging, os.environ.get('LOG_LEVEL', 'INFO').upper(), logging.INFO)


def get_logger(name: str = None) -> logging.Logger:
    """
    Get a logger writing deployment progress to stdout.

    Args:
        name: Logger name, usually the calling module's __name__

    Returns:
        Logger with a single stdout handler
    """
    logger = logging.getLogger(name or __name__)
    if logger.name in _configured:
        return logger

    level = _level_from_environment()
    logger.setLevel(level)

    # Same stream as the printed deployment reports, so the two interleave in order
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(handler)
    logger.propagate = False

    _configured.add(logger.name)
    return logger


def set_log_level(level: str) -> None:
    """
    Change the level of every logger created through get_logger.

    Used by the CLI when --log-level is passed after modules were imported.
    """
    os.environ['LOG_LEVEL'] = level.upper()
    numeric_level = _level_from_environment()
    for name in _configured:
        logger = logging.getLogger(name)
        logger.setLevel(numeric_level)
        for handler in logger.handlers:
            handler.setLevel(numeric_level)
