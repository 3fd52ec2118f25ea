"""
Core module containing domain models, service interfaces and the Message Bridge.

This module is independent of web frameworks and storage backends.
"""

from .interfaces.lifecycle import IStartable, IStoppable, IHealthCheckable, IComponent
from .interfaces.messaging import ICommandDispatcher, IMessageBridge
from .domain.messages import BridgeEvent, CommandKind, EventKind
from .domain.sessions import UploadPhase, UploadSession

__all__ = [
    "IStartable",
    "IStoppable",
    "IHealthCheckable",
    "IComponent",
    "ICommandDispatcher",
    "IMessageBridge",
    "BridgeEvent",
    "CommandKind",
    "EventKind",
    "UploadPhase",
    "UploadSession",
]
