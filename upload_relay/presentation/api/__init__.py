"""
FastAPI application for the upload relay.
"""

from .app import create_app

__all__ = [
    "create_app",
]
