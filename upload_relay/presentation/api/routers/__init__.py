"""
API routers.
"""

from . import attachments, bridge, health, uploads

__all__ = [
    "attachments",
    "bridge",
    "health",
    "uploads",
]
