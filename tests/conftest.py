"""
Shared fixtures for the upload relay test suite.
"""

from typing import List

import pytest

from upload_relay.core.domain.messages import BridgeEvent
from upload_relay.core.interfaces.messaging import IEventPublisher


class RecordingPublisher(IEventPublisher):
    """Event publisher that keeps every event it is handed."""

    def __init__(self) -> None:
        self.events: List[BridgeEvent] = []

    async def publish(self, event: BridgeEvent) -> None:
        self.events.append(event)

    def for_upload(self, upload_id: str) -> List[BridgeEvent]:
        return [event for event in self.events if event.upload_id == upload_id]


@pytest.fixture
def publisher():
    return RecordingPublisher()
