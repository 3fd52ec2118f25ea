"""
Core services: the command dispatcher and the Message Bridge.
"""

from .command_dispatcher import CommandDispatcher
from .message_bridge import BridgeSubscription, MessageBridge

__all__ = [
    "CommandDispatcher",
    "BridgeSubscription",
    "MessageBridge",
]
