"""
Message Bridge between the UI layer and the upload session manager.

Inbound commands are parsed and handed to the command dispatcher; outbound
events are delivered to subscribers in publish order. An event published
while another is being delivered (for instance by a subscriber that cancels
an upload) waits until the current event has reached every subscriber.
"""

import asyncio
import logging
import time
import uuid
from collections import deque
from typing import Any, Deque, Dict, FrozenSet, Iterable, Mapping, Optional, Union

from ..domain.attachments import UploadDestination
from ..domain.messages import (
    BridgeCommand, BridgeEvent, CancelCommand, EncodeCommand, EventKind,
    OpenFileBrowserCommand, UploadCommand, parse_command
)
from ..exceptions import MalformedCommand, UnknownCommandKind
from ..interfaces.lifecycle import IComponent
from ..interfaces.messaging import EventHandler, ICommandDispatcher, IMessageBridge

logger = logging.getLogger(__name__)

_COMMAND_TYPES = (EncodeCommand, UploadCommand, CancelCommand, OpenFileBrowserCommand)


class BridgeSubscription:
    """Represents an outbound event subscription."""

    def __init__(self, subscription_id: str, handler: EventHandler,
                 kinds: Optional[FrozenSet[EventKind]] = None,
                 upload_id: Optional[str] = None):
        self.subscription_id = subscription_id
        self.handler = handler
        self.kinds = kinds
        self.upload_id = upload_id
        self.created_at = time.time()
        self.call_count = 0
        self.last_called: Optional[float] = None
        self.error_count = 0

    def matches(self, event: BridgeEvent) -> bool:
        if self.kinds is not None and event.kind not in self.kinds:
            return False
        if self.upload_id is not None and event.upload_id != self.upload_id:
            return False
        return True


class MessageBridge(IComponent, IMessageBridge):
    """
    Duplex publish/subscribe channel.

    A failing subscriber never prevents delivery to the others, and an
    unknown inbound command kind is logged and dropped.
    """

    def __init__(self, dispatcher: ICommandDispatcher,
                 default_destination: Optional[UploadDestination] = None):
        self._dispatcher = dispatcher
        self._default_destination = default_destination
        self._subscriptions: Dict[str, BridgeSubscription] = {}
        self._backlog: Deque[BridgeEvent] = deque()
        self._delivering_task: Optional['asyncio.Task[Any]'] = None
        self._delivery_lock: Optional[asyncio.Lock] = None
        self._running = False

        # Metrics
        self._metrics: Dict[str, Any] = {
            'commands_received': 0,
            'commands_dropped': 0,
            'commands_rejected': 0,
            'events_published': 0,
            'events_dropped': 0,
            'handler_errors': 0
        }

    @property
    def name(self) -> str:
        """Get component name."""
        return "MessageBridge"

    async def start(self) -> None:
        """Start accepting commands and delivering events."""
        if self._running:
            return

        self._running = True
        logger.info("Message bridge started")

    async def stop(self) -> None:
        """Stop the bridge and drop all subscriptions."""
        if not self._running:
            return

        self._running = False
        self._subscriptions.clear()
        self._backlog.clear()
        logger.info("Message bridge stopped")

    async def check_health(self) -> Dict[str, Any]:
        """Check message bridge health."""
        return {
            'healthy': True,
            'status': 'running' if self._running else 'stopped',
            'details': {
                'subscriptions_count': len(self._subscriptions),
                **self._metrics
            }
        }

    async def send(self, message: Union[BridgeCommand, Mapping[str, Any]],
                   allow_paths: bool = False) -> bool:
        """
        Submit an inbound command.

        Raw wire messages may only name a file on this host by path when
        ``allow_paths`` is set; parsed commands are trusted as they are.
        """
        if not self._running:
            raise RuntimeError("Message bridge is not running")

        self._metrics['commands_received'] += 1

        if isinstance(message, _COMMAND_TYPES):
            command = message
        else:
            try:
                command = parse_command(message, self._default_destination, allow_paths)
            except UnknownCommandKind as e:
                self._metrics['commands_dropped'] += 1
                logger.warning(f"Dropping bridge message: {e}")
                return False
            except MalformedCommand as e:
                self._metrics['commands_rejected'] += 1
                logger.warning(f"Rejecting malformed bridge message: {e}")
                await self.publish(BridgeEvent.rejected(e.upload_id, str(e)))
                return False

        logger.debug(f"Bridge command received: {command.kind.value}")
        return await self._dispatcher.dispatch(command)

    async def publish(self, event: BridgeEvent) -> None:
        """Deliver an outbound event to all matching subscribers."""
        if not self._running:
            self._metrics['events_dropped'] += 1
            logger.debug(f"Bridge stopped, dropping {event.kind.value} event for {event.upload_id}")
            return

        self._metrics['events_published'] += 1
        current = asyncio.current_task()

        # Published by a subscriber: delivered once the current event is done
        if self._delivering_task is not None and self._delivering_task is current:
            self._backlog.append(event)
            return

        if self._delivery_lock is None:
            self._delivery_lock = asyncio.Lock()

        async with self._delivery_lock:
            self._delivering_task = current
            self._backlog.append(event)
            try:
                while self._backlog:
                    await self._deliver(self._backlog.popleft())
            finally:
                self._delivering_task = None

    async def _deliver(self, event: BridgeEvent) -> None:
        # Snapshot: handlers may subscribe or unsubscribe while being called
        for subscription in list(self._subscriptions.values()):
            if subscription.subscription_id not in self._subscriptions:
                continue
            if not subscription.matches(event):
                continue

            try:
                result = subscription.handler(event)
                if asyncio.iscoroutine(result):
                    await result

                subscription.call_count += 1
                subscription.last_called = time.time()

            except Exception as e:
                subscription.error_count += 1
                self._metrics['handler_errors'] += 1
                logger.error(f"Subscriber error for {event.kind.value} event: {e}")

    async def subscribe(
        self,
        handler: EventHandler,
        kinds: Optional[Iterable[EventKind]] = None,
        upload_id: Optional[str] = None
    ) -> str:
        """Subscribe to outbound events."""
        subscription_id = str(uuid.uuid4())
        self._subscriptions[subscription_id] = BridgeSubscription(
            subscription_id=subscription_id,
            handler=handler,
            kinds=frozenset(kinds) if kinds is not None else None,
            upload_id=upload_id
        )

        logger.debug(f"Added bridge subscription {subscription_id}")
        return subscription_id

    async def unsubscribe(self, subscription_id: str) -> bool:
        """Unsubscribe using subscription ID."""
        if self._subscriptions.pop(subscription_id, None) is None:
            return False

        logger.debug(f"Removed bridge subscription {subscription_id}")
        return True

    async def get_metrics(self) -> Dict[str, Any]:
        """Get message bridge metrics."""
        return {
            **self._metrics,
            'subscriptions_count': len(self._subscriptions)
        }
