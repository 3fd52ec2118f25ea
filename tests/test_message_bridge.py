"""
Tests for the message bridge and the command dispatcher.

This module tests command routing by kind, ordered event delivery,
subscription filters and isolation of failing subscribers.
"""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from upload_relay.core.domain.messages import (
    BridgeEvent, CancelCommand, CommandKind, EventKind
)
from upload_relay.core.services import CommandDispatcher, MessageBridge


@pytest.fixture
async def dispatcher():
    dispatcher = CommandDispatcher()
    await dispatcher.start()
    yield dispatcher
    await dispatcher.stop()


@pytest.fixture
async def bridge(dispatcher):
    bridge = MessageBridge(dispatcher)
    await bridge.start()
    yield bridge
    await bridge.stop()


class TestCommandDispatcher:
    """Test cases for CommandDispatcher."""

    @pytest.mark.asyncio
    async def test_dispatch_to_registered_handler(self, dispatcher):
        handler = AsyncMock()
        dispatcher.register_handler(CommandKind.CANCEL, handler)

        command = CancelCommand(upload_id="u1")
        assert await dispatcher.dispatch(command) is True

        handler.assert_awaited_once_with(command)
        metrics = await dispatcher.get_metrics()
        assert metrics['commands_dispatched'] == 1

    @pytest.mark.asyncio
    async def test_dispatch_without_handler_drops(self, dispatcher):
        assert await dispatcher.dispatch(CancelCommand(upload_id="u1")) is False

        metrics = await dispatcher.get_metrics()
        assert metrics['commands_dropped'] == 1

    @pytest.mark.asyncio
    async def test_handler_error_propagates(self, dispatcher):
        dispatcher.register_handler(CommandKind.CANCEL, AsyncMock(side_effect=RuntimeError("boom")))

        with pytest.raises(RuntimeError, match="boom"):
            await dispatcher.dispatch(CancelCommand(upload_id="u1"))

        metrics = await dispatcher.get_metrics()
        assert metrics['commands_failed'] == 1

    @pytest.mark.asyncio
    async def test_dispatch_when_stopped(self):
        dispatcher = CommandDispatcher()

        with pytest.raises(RuntimeError):
            await dispatcher.dispatch(CancelCommand(upload_id="u1"))

    @pytest.mark.asyncio
    async def test_unregister(self, dispatcher):
        dispatcher.register_handler(CommandKind.CANCEL, AsyncMock())

        assert dispatcher.unregister_handler(CommandKind.CANCEL) is True
        assert dispatcher.unregister_handler(CommandKind.CANCEL) is False

    @pytest.mark.asyncio
    async def test_health_lists_kinds(self, dispatcher):
        dispatcher.register_handler(CommandKind.ENCODE, AsyncMock())

        health = await dispatcher.check_health()

        assert health['healthy'] is True
        assert health['details']['handled_kinds'] == ["encode"]


class TestMessageBridge:
    """Test cases for MessageBridge."""

    @pytest.mark.asyncio
    async def test_send_parses_and_dispatches(self, bridge, dispatcher):
        handler = AsyncMock()
        dispatcher.register_handler(CommandKind.CANCEL, handler)

        assert await bridge.send({"kind": "cancel", "uploadId": "u1"}) is True

        handler.assert_awaited_once_with(CancelCommand(upload_id="u1"))

    @pytest.mark.asyncio
    async def test_send_typed_command(self, bridge, dispatcher):
        handler = AsyncMock()
        dispatcher.register_handler(CommandKind.CANCEL, handler)

        await bridge.send(CancelCommand(upload_id="u1"))

        handler.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unknown_kind_is_dropped(self, bridge):
        received = []
        await bridge.subscribe(received.append)

        assert await bridge.send({"kind": "teleport", "uploadId": "u1"}) is False

        assert received == []
        metrics = await bridge.get_metrics()
        assert metrics['commands_dropped'] == 1

    @pytest.mark.asyncio
    async def test_malformed_command_publishes_error(self, bridge):
        received = []
        await bridge.subscribe(received.append)

        assert await bridge.send({"kind": "encode", "uploadId": "u1"}) is False

        assert len(received) == 1
        assert received[0].kind is EventKind.ERROR
        assert received[0].upload_id == "u1"
        assert "file" in received[0].data["error"]

    @pytest.mark.asyncio
    async def test_send_when_stopped(self, dispatcher):
        bridge = MessageBridge(dispatcher)

        with pytest.raises(RuntimeError):
            await bridge.send({"kind": "cancel", "uploadId": "u1"})

    @pytest.mark.asyncio
    async def test_events_delivered_in_publish_order(self, bridge):
        received = []
        await bridge.subscribe(lambda event: received.append(event.data))

        for value in (10.0, 50.0, 100.0):
            await bridge.publish(BridgeEvent.progress("u1", value))

        assert received == [10.0, 50.0, 100.0]

    @pytest.mark.asyncio
    async def test_async_subscriber(self, bridge):
        handler = AsyncMock()
        await bridge.subscribe(handler)

        event = BridgeEvent.uploaded("u1", {"reference": "r"})
        await bridge.publish(event)

        handler.assert_awaited_once_with(event)

    @pytest.mark.asyncio
    async def test_kind_and_upload_filters(self, bridge):
        progress_only = []
        u2_only = []
        await bridge.subscribe(progress_only.append, kinds=[EventKind.PROGRESS])
        await bridge.subscribe(u2_only.append, upload_id="u2")

        await bridge.publish(BridgeEvent.progress("u1", 1.0))
        await bridge.publish(BridgeEvent.uploaded("u2", None))

        assert [e.upload_id for e in progress_only] == ["u1"]
        assert [e.kind for e in u2_only] == [EventKind.UPLOAD]

    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_block_others(self, bridge):
        failing = Mock(side_effect=RuntimeError("subscriber bug"))
        received = []
        await bridge.subscribe(failing)
        await bridge.subscribe(received.append)

        await bridge.publish(BridgeEvent.progress("u1", 5.0))

        assert len(received) == 1
        metrics = await bridge.get_metrics()
        assert metrics['handler_errors'] == 1

    @pytest.mark.asyncio
    async def test_unsubscribe(self, bridge):
        received = []
        subscription_id = await bridge.subscribe(received.append)

        assert await bridge.unsubscribe(subscription_id) is True
        assert await bridge.unsubscribe(subscription_id) is False

        await bridge.publish(BridgeEvent.progress("u1", 5.0))
        assert received == []

    @pytest.mark.asyncio
    async def test_unsubscribe_during_delivery(self, bridge):
        """Test a subscriber removed by an earlier one is skipped for that event."""
        second = []
        ids = {}

        async def first(event):
            await bridge.unsubscribe(ids['second'])

        await bridge.subscribe(first)
        ids['second'] = await bridge.subscribe(second.append)

        await bridge.publish(BridgeEvent.progress("u1", 5.0))

        assert second == []

    @pytest.mark.asyncio
    async def test_publish_after_stop_is_dropped(self, dispatcher):
        bridge = MessageBridge(dispatcher)
        await bridge.start()
        received = []
        await bridge.subscribe(received.append)
        await bridge.stop()

        await bridge.publish(BridgeEvent.progress("u1", 5.0))

        assert received == []
        health = await bridge.check_health()
        assert health['status'] == 'stopped'
        assert health['details']['events_dropped'] == 1

    @pytest.mark.asyncio
    async def test_event_published_by_subscriber_follows_current_event(self, bridge):
        """Test an event published during delivery reaches later subscribers after the current one."""
        first_seen = []
        second_seen = []

        async def first(event):
            first_seen.append((event.kind, event.data))
            if event.kind is EventKind.PROGRESS:
                await bridge.publish(BridgeEvent.cancelled(event.upload_id))

        await bridge.subscribe(first)
        await bridge.subscribe(lambda event: second_seen.append((event.kind, event.data)))

        await bridge.publish(BridgeEvent.progress("u2", 40.0))

        expected = [(EventKind.PROGRESS, 40.0), (EventKind.UPLOAD, {"cancelled": True})]
        assert first_seen == expected
        assert second_seen == expected

    @pytest.mark.asyncio
    async def test_publish_from_other_task_waits_for_delivery(self, bridge):
        release = asyncio.Event()
        received = []

        async def slow(event):
            if event.data == 1.0:
                await release.wait()
            received.append(event.data)

        await bridge.subscribe(slow)

        first = asyncio.create_task(bridge.publish(BridgeEvent.progress("u1", 1.0)))
        await asyncio.sleep(0)
        second = asyncio.create_task(bridge.publish(BridgeEvent.progress("u1", 2.0)))
        await asyncio.sleep(0)
        release.set()
        await asyncio.gather(first, second)

        assert received == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_raw_encode_with_path_rejected(self, bridge, dispatcher, tmp_path):
        handler = AsyncMock()
        dispatcher.register_handler(CommandKind.ENCODE, handler)
        received = []
        await bridge.subscribe(received.append)
        secret = tmp_path / "secret.txt"
        secret.write_text("TOPSECRET")

        for file in (str(secret), {"path": str(secret)}):
            assert await bridge.send({"kind": "encode", "uploadId": "x", "file": file}) is False

        handler.assert_not_awaited()
        assert [e.kind for e in received] == [EventKind.ERROR, EventKind.ERROR]
        assert all("paths are not accepted" in e.data["error"] for e in received)

    @pytest.mark.asyncio
    async def test_raw_encode_with_path_allowed_when_trusted(self, bridge, dispatcher):
        handler = AsyncMock()
        dispatcher.register_handler(CommandKind.ENCODE, handler)

        assert await bridge.send({"kind": "encode", "uploadId": "x", "file": "/tmp/a.txt"},
                                 allow_paths=True) is True

        handler.assert_awaited_once()
