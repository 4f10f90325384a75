"""CLI module for crony.

This package provides the command-line interface for running crontab
repositories and for checking crontab files and schedule expressions.
"""

from .config import (
    ConfigurationError,
    ConfigurationLoader,
    CronyConfig,
    load_configuration,
    parse_duration,
)

__all__ = [
    'ConfigurationError',
    'ConfigurationLoader',
    'CronyConfig',
    'load_configuration',
    'parse_duration',
]
