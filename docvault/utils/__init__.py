"""Utility functions for docvault."""

from .logging import console, get_logger, setup_logging

__all__ = [
    "console",
    "get_logger",
    "setup_logging",
]
