"""
Application layer: dependency injection and startup logic.

This layer wires the core services to their infrastructure implementations
and manages the application lifecycle.
"""

from .container import Container, IContainer, ServiceLifetime
from .startup import ApplicationStartup, default_destination

__all__ = [
    "ApplicationStartup",
    "Container",
    "IContainer",
    "ServiceLifetime",
    "default_destination",
]
