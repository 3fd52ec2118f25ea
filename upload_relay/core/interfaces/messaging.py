"""
Messaging interfaces for the Message Bridge between the UI layer and the
upload session manager.
"""

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Iterable, Mapping, Optional, Union

from ..domain.messages import BridgeCommand, BridgeEvent, CommandKind, EventKind

CommandHandler = Callable[[Any], Awaitable[None]]
EventHandler = Callable[[BridgeEvent], Any]


class IEventPublisher(ABC):
    """Interface for components that emit outbound bridge events."""

    @abstractmethod
    async def publish(self, event: BridgeEvent) -> None:
        """
        Deliver an event to every matching subscriber.

        Args:
            event: Event to deliver
        """
        pass


class ICommandDispatcher(ABC):
    """Interface for routing inbound commands to handlers by kind."""

    @abstractmethod
    def register_handler(self, kind: CommandKind, handler: CommandHandler) -> None:
        """Register the handler for a command kind, replacing any previous one."""
        pass

    @abstractmethod
    def unregister_handler(self, kind: CommandKind) -> bool:
        """Remove the handler for a command kind."""
        pass

    @abstractmethod
    async def dispatch(self, command: BridgeCommand) -> bool:
        """
        Route a command to its handler.

        Returns:
            True if a handler ran, False if the command was dropped
        """
        pass


class IMessageBridge(IEventPublisher):
    """Duplex channel: commands in from the UI, events out to the UI."""

    @abstractmethod
    async def send(self, message: Union[BridgeCommand, Mapping[str, Any]],
                   allow_paths: bool = False) -> bool:
        """
        Submit an inbound command (parsed or raw wire message).

        Args:
            message: Command or wire message
            allow_paths: Whether a raw encode message may name a local file by path

        Returns:
            True if the command was dispatched to a handler
        """
        pass

    @abstractmethod
    async def subscribe(
        self,
        handler: EventHandler,
        kinds: Optional[Iterable[EventKind]] = None,
        upload_id: Optional[str] = None
    ) -> str:
        """
        Subscribe to outbound events.

        Args:
            handler: Sync or async callable receiving each event
            kinds: Only deliver these event kinds (all when omitted)
            upload_id: Only deliver events for this upload (all when omitted)

        Returns:
            Subscription ID for unsubscribing
        """
        pass

    @abstractmethod
    async def unsubscribe(self, subscription_id: str) -> bool:
        """
        Remove a subscription. Unsubscribing twice is harmless.

        Returns:
            True if the subscription existed
        """
        pass

    @abstractmethod
    async def get_metrics(self) -> Dict[str, Any]:
        """Get bridge metrics."""
        pass
