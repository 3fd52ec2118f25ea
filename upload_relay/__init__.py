"""
Upload Relay - signed upload URLs, an attachment registry and a client-side
upload session manager driven over a message bridge.
"""

__version__ = "0.1.0"

from .core.interfaces.lifecycle import IComponent, IHealthCheckable, IStartable, IStoppable
from .core.interfaces.messaging import ICommandDispatcher, IMessageBridge
from .application.container import Container, IContainer

__all__ = [
    "__version__",
    "Container",
    "IComponent",
    "ICommandDispatcher",
    "IContainer",
    "IHealthCheckable",
    "IMessageBridge",
    "IStartable",
    "IStoppable",
]
