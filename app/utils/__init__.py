"""Utility functions for the dispatch coordinator."""

from app.utils.logging import configure_logging, get_logger

__all__ = [
    "configure_logging",
    "get_logger",
]
