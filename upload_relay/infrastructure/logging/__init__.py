"""
Logging infrastructure built on loguru.
"""

from .setup import InterceptHandler, LoggingManager, setup_logging

__all__ = [
    "InterceptHandler",
    "LoggingManager",
    "setup_logging",
]
