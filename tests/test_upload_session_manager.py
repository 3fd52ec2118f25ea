"""
Tests for the upload session manager.

This module tests the encode and upload phases, cancellation, progress
reporting and the at-most-one-terminal-event guarantee, using in-process
fakes for the reader and the transport.
"""

import asyncio
import json
from typing import List, Optional

import pytest

from upload_relay.core.domain.attachments import (
    BodyEncoding, ResponseFormat, UploadDestination, UploadMethod
)
from upload_relay.core.domain.messages import (
    CancelCommand, EncodeCommand, EventKind, OpenFileBrowserCommand, UploadCommand
)
from upload_relay.core.domain.sessions import FileHandle, UploadPhase
from upload_relay.core.exceptions import ReadFailure, TransportFailure
from upload_relay.core.interfaces.upload import (
    IFileContentReader, IUploadTransport, TransportRequest, TransportResponse
)
from upload_relay.core.services import CommandDispatcher, MessageBridge
from upload_relay.infrastructure.services.upload import (
    ElementFileBrowser, UploadSessionManager, encode_data_uri
)

DESTINATION = UploadDestination(url="http://relay.test/attachments")


class FakeReader(IFileContentReader):
    """Reader returning a fixed data URI, or failing for configured ids."""

    def __init__(self, fail_for=(), gate: Optional[asyncio.Event] = None):
        self.fail_for = set(fail_for)
        self.gate = gate
        self.calls: List[str] = []

    async def read(self, upload_id, file):
        self.calls.append(upload_id)
        if self.gate is not None:
            await self.gate.wait()
        if upload_id in self.fail_for:
            raise ReadFailure(upload_id, f"Cannot read {file.name}: No such file or directory")
        return encode_data_uri(file.content or b"hello", "text/plain")


class FakeTransport(IUploadTransport):
    """Transport that reports progress in steps, then returns a canned response."""

    def __init__(self, status=201, body=b'{"reference": "ref-1"}', steps=4,
                 error: Optional[Exception] = None, hold: Optional[asyncio.Event] = None):
        self.status = status
        self.body = body
        self.steps = steps
        self.error = error
        self.hold = hold
        self.requests: List[TransportRequest] = []
        self.aborted = 0

    async def send(self, request, on_progress=None):
        self.requests.append(request)
        total = len(request.body) or 1
        try:
            for step in range(1, self.steps + 1):
                if on_progress is not None:
                    await on_progress(total * step // self.steps, total)
                await asyncio.sleep(0)
            if self.hold is not None:
                await self.hold.wait()
        except asyncio.CancelledError:
            self.aborted += 1
            raise
        if self.error is not None:
            raise self.error
        return TransportResponse(status=self.status, reason="Reason", body=self.body)


def make_manager(publisher, reader=None, transport=None, **kwargs):
    return UploadSessionManager(publisher, reader or FakeReader(),
                                transport or FakeTransport(), **kwargs)


def encode(upload_id="u1", chain_to=None, content=b"hello"):
    return EncodeCommand(upload_id=upload_id,
                         file=FileHandle.from_bytes("a.txt", content, "text/plain"),
                         chain_to=chain_to, additional_data="a.txt")


def upload(upload_id="u2", destination=DESTINATION, data="data:text/plain;base64,aGVsbG8="):
    return UploadCommand(upload_id=upload_id, destination=destination,
                         encoded_data=data, additional_data="a.txt")


def terminal_events(events):
    return [event for event in events if event.is_terminal]


@pytest.fixture
async def manager(publisher):
    manager = make_manager(publisher)
    await manager.start()
    yield manager
    await manager.stop()


class TestEncode:
    """Test cases for the encode phase."""

    @pytest.mark.asyncio
    async def test_encode_emits_data_uri(self, manager, publisher):
        await manager.handle_encode(encode("u1"))
        await manager.drain()

        events = publisher.for_upload("u1")
        assert [e.to_dict() for e in events] == [{
            "kind": "encode", "uploadId": "u1", "data": "data:text/plain;base64,aGVsbG8=",
        }]

        session = manager.get_session("u1")
        assert session.phase is UploadPhase.READY

    @pytest.mark.asyncio
    async def test_encode_failure_is_terminal(self, publisher):
        manager = make_manager(publisher, reader=FakeReader(fail_for={"u1"}))
        await manager.start()

        await manager.handle_encode(encode("u1"))
        await manager.drain()

        events = publisher.for_upload("u1")
        assert len(events) == 1
        assert events[0].kind is EventKind.ENCODE
        assert "No such file" in events[0].data["error"]
        assert manager.get_session("u1") is None

        await manager.stop()

    @pytest.mark.asyncio
    async def test_duplicate_live_id_rejected(self, publisher):
        gate = asyncio.Event()
        manager = make_manager(publisher, reader=FakeReader(gate=gate))
        await manager.start()

        await manager.handle_encode(encode("u1"))
        await manager.handle_encode(encode("u1"))

        assert [e.kind for e in publisher.events] == [EventKind.ERROR]

        gate.set()
        await manager.drain()
        assert [e.kind for e in publisher.events] == [EventKind.ERROR, EventKind.ENCODE]

        await manager.stop()

    @pytest.mark.asyncio
    async def test_concurrent_encodes(self, manager, publisher):
        for i in range(5):
            await manager.handle_encode(encode(f"u{i}", content=f"file-{i}".encode()))
        await manager.drain()

        for i in range(5):
            events = publisher.for_upload(f"u{i}")
            assert len(events) == 1
            assert events[0].data == encode_data_uri(f"file-{i}".encode(), "text/plain")

    @pytest.mark.asyncio
    async def test_encode_requires_running(self, publisher):
        manager = make_manager(publisher)

        with pytest.raises(RuntimeError):
            await manager.handle_encode(encode("u1"))

    @pytest.mark.asyncio
    async def test_encode_then_upload(self, manager, publisher):
        """Test an upload without data transmits the previously encoded payload."""
        await manager.handle_encode(encode("u1"))
        await manager.drain()

        await manager.handle_upload(upload("u1", data=None))
        await manager.drain()

        kinds = [e.kind for e in publisher.for_upload("u1")]
        assert kinds[0] is EventKind.ENCODE
        assert kinds[-1] is EventKind.UPLOAD
        assert publisher.for_upload("u1")[-1].data == {"reference": "ref-1"}

    @pytest.mark.asyncio
    async def test_chained_upload(self, publisher):
        transport = FakeTransport()
        manager = make_manager(publisher, transport=transport)
        await manager.start()

        await manager.handle_encode(encode("u1", chain_to=DESTINATION))
        await manager.drain()

        kinds = [e.kind for e in publisher.for_upload("u1")]
        assert kinds[0] is EventKind.ENCODE
        assert EventKind.PROGRESS in kinds
        assert kinds[-1] is EventKind.UPLOAD
        assert transport.requests[0].body == b"hello"
        assert transport.requests[0].file_name == "a.txt"

        await manager.stop()


class TestUpload:
    """Test cases for the upload phase."""

    @pytest.mark.asyncio
    async def test_upload_success_emits_parsed_body(self, publisher):
        transport = FakeTransport(status=201, body=json.dumps({"reference": "abc"}).encode())
        manager = make_manager(publisher, transport=transport)
        await manager.start()

        await manager.handle_upload(upload("u2"))
        await manager.drain()

        events = publisher.for_upload("u2")
        assert events[-1].to_dict() == {
            "kind": "upload", "uploadId": "u2", "data": {"reference": "abc"},
        }
        assert len(terminal_events(events)) == 1

        request = transport.requests[0]
        assert request.body == b"hello"
        assert request.content_type == "text/plain"

        await manager.stop()

    @pytest.mark.asyncio
    async def test_server_error_becomes_failure(self, publisher):
        transport = FakeTransport(status=500, body=b"boom")
        manager = make_manager(publisher, transport=transport)
        await manager.start()

        await manager.handle_upload(upload("u2"))
        await manager.drain()

        events = terminal_events(publisher.for_upload("u2"))
        assert len(events) == 1
        assert events[0].kind is EventKind.UPLOAD
        assert events[0].data == {"error": "500; Reason; boom"}
        assert events[0].data["error"].startswith("500; ")

        await manager.stop()

    @pytest.mark.asyncio
    async def test_transport_failure(self, publisher):
        transport = FakeTransport(error=TransportFailure("Connection refused"))
        manager = make_manager(publisher, transport=transport)
        await manager.start()

        await manager.handle_upload(upload("u2"))
        await manager.drain()

        assert publisher.for_upload("u2")[-1].data == {"error": "Connection refused"}

        await manager.stop()

    @pytest.mark.asyncio
    async def test_malformed_payload_fails(self, manager, publisher):
        await manager.handle_upload(upload("u2", data="data:text/plain;base64,***"))
        await manager.drain()

        event = publisher.for_upload("u2")[-1]
        assert event.kind is EventKind.UPLOAD
        assert "base64" in event.data["error"]

    @pytest.mark.asyncio
    async def test_raw_bytes_payload(self, publisher):
        transport = FakeTransport()
        manager = make_manager(publisher, transport=transport)
        await manager.start()

        await manager.handle_upload(upload("u2", data=b"\x00\x01"))
        await manager.drain()

        assert transport.requests[0].body == b"\x00\x01"
        assert transport.requests[0].content_type == "application/octet-stream"

        await manager.stop()

    @pytest.mark.asyncio
    async def test_upload_without_payload_rejected(self, manager, publisher):
        await manager.handle_upload(upload("u2", data=None))

        assert [e.kind for e in publisher.events] == [EventKind.ERROR]
        assert manager.get_session("u2") is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response_format,body,expected", [
        (ResponseFormat.NONE, b"ignored", None),
        (ResponseFormat.TEXT, b"plain text", "plain text"),
        (ResponseFormat.JSON, b"", None),
    ])
    async def test_response_formats(self, publisher, response_format, body, expected):
        destination = UploadDestination(url="http://s3.test/put", method=UploadMethod.PUT,
                                        body_encoding=BodyEncoding.RAW,
                                        response_format=response_format)
        manager = make_manager(publisher, transport=FakeTransport(status=200, body=body))
        await manager.start()

        await manager.handle_upload(upload("u2", destination=destination))
        await manager.drain()

        assert publisher.for_upload("u2")[-1].data == expected

        await manager.stop()

    @pytest.mark.asyncio
    async def test_invalid_json_response(self, publisher):
        manager = make_manager(publisher, transport=FakeTransport(status=200, body=b"<html>"))
        await manager.start()

        await manager.handle_upload(upload("u2"))
        await manager.drain()

        assert publisher.for_upload("u2")[-1].data["error"].startswith("Invalid response body")

        await manager.stop()

    @pytest.mark.asyncio
    async def test_progress_is_monotonic_and_bounded(self, publisher):
        manager = make_manager(publisher, transport=FakeTransport(steps=8))
        await manager.start()

        await manager.handle_upload(upload("u2"))
        await manager.drain()

        values = [e.data for e in publisher.for_upload("u2") if e.kind is EventKind.PROGRESS]
        assert values
        assert values == sorted(values)
        assert all(0.0 <= value <= 100.0 for value in values)
        assert values[-1] == 100.0

        await manager.stop()

    @pytest.mark.asyncio
    async def test_reused_id_after_completion_starts_fresh(self, manager, publisher):
        await manager.handle_upload(upload("u2"))
        await manager.drain()
        await manager.handle_upload(upload("u2"))
        await manager.drain()

        assert len(terminal_events(publisher.for_upload("u2"))) == 2

    @pytest.mark.asyncio
    async def test_upload_while_uploading_rejected(self, publisher):
        hold = asyncio.Event()
        manager = make_manager(publisher, transport=FakeTransport(hold=hold))
        await manager.start()

        await manager.handle_upload(upload("u2"))
        await manager.handle_upload(upload("u2"))

        assert EventKind.ERROR in [e.kind for e in publisher.for_upload("u2")]

        hold.set()
        await manager.drain()
        assert len(terminal_events(publisher.for_upload("u2"))) == 1

        await manager.stop()


class TestCancel:
    """Test cases for cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_in_flight(self, publisher):
        hold = asyncio.Event()
        transport = FakeTransport(hold=hold)
        manager = make_manager(publisher, transport=transport)
        await manager.start()

        await manager.handle_upload(upload("u2"))
        for _ in range(10):
            await asyncio.sleep(0)

        await manager.handle_cancel(CancelCommand(upload_id="u2"))
        await manager.drain()

        events = publisher.for_upload("u2")
        assert events[-1].data == {"cancelled": True}
        assert len(terminal_events(events)) == 1
        assert transport.aborted == 1
        assert manager.get_session("u2") is None

        await manager.stop()

    @pytest.mark.asyncio
    async def test_no_events_after_cancel(self, publisher):
        hold = asyncio.Event()
        manager = make_manager(publisher, transport=FakeTransport(hold=hold))
        await manager.start()

        await manager.handle_upload(upload("u2"))
        await asyncio.sleep(0)
        await manager.handle_cancel(CancelCommand(upload_id="u2"))
        count = len(publisher.events)

        hold.set()
        await manager.drain()

        assert len(publisher.events) == count

        await manager.stop()

    @pytest.mark.asyncio
    async def test_double_cancel_is_noop(self, publisher):
        hold = asyncio.Event()
        transport = FakeTransport(hold=hold)
        manager = make_manager(publisher, transport=transport)
        await manager.start()

        await manager.handle_upload(upload("u2"))
        await asyncio.sleep(0)
        await manager.handle_cancel(CancelCommand(upload_id="u2"))
        await manager.handle_cancel(CancelCommand(upload_id="u2"))
        await manager.drain()

        assert len(terminal_events(publisher.for_upload("u2"))) == 1
        assert transport.aborted == 1

        await manager.stop()

    @pytest.mark.asyncio
    async def test_cancel_unknown_is_noop(self, manager, publisher):
        await manager.handle_cancel(CancelCommand(upload_id="nope"))

        assert publisher.events == []

    @pytest.mark.asyncio
    async def test_cancel_after_completion_is_noop(self, manager, publisher):
        await manager.handle_upload(upload("u2"))
        await manager.drain()
        count = len(publisher.events)

        await manager.handle_cancel(CancelCommand(upload_id="u2"))

        assert len(publisher.events) == count

    @pytest.mark.asyncio
    async def test_cancel_ready_session_is_noop(self, manager, publisher):
        await manager.handle_encode(encode("u1"))
        await manager.drain()

        await manager.handle_cancel(CancelCommand(upload_id="u1"))

        assert manager.get_session("u1").phase is UploadPhase.READY

    @pytest.mark.asyncio
    async def test_cancel_from_progress_subscriber(self, publisher):
        """Test a cancel issued while handling a progress event ends the upload once."""
        transport = FakeTransport(steps=4)
        manager = make_manager(publisher, transport=transport)
        original_publish = publisher.publish

        async def publish_and_cancel(event):
            await original_publish(event)
            if event.kind is EventKind.PROGRESS:
                await manager.handle_cancel(CancelCommand(upload_id=event.upload_id))

        publisher.publish = publish_and_cancel
        await manager.start()

        await manager.handle_upload(upload("u2"))
        await manager.drain()

        events = publisher.for_upload("u2")
        assert [e.kind for e in events] == [EventKind.PROGRESS, EventKind.UPLOAD]
        assert events[-1].data == {"cancelled": True}
        assert transport.aborted == 1

        await manager.stop()

    @pytest.mark.asyncio
    async def test_cancel_from_first_of_two_bridge_subscribers(self):
        """Test no subscriber sees a progress event after the cancelled event."""
        dispatcher = CommandDispatcher()
        bridge = MessageBridge(dispatcher)
        await dispatcher.start()
        await bridge.start()

        transport = FakeTransport(steps=4)
        manager = make_manager(bridge, transport=transport)
        manager.register_handlers(dispatcher)
        await manager.start()

        async def canceller(event):
            if event.kind is EventKind.PROGRESS and event.data == 40.0:
                await bridge.send(CancelCommand(upload_id=event.upload_id))

        observed = []
        await bridge.subscribe(canceller)
        await bridge.subscribe(observed.append)

        await bridge.send(upload("u2"))
        await manager.drain()

        assert [(e.kind, e.data) for e in observed] == [
            (EventKind.PROGRESS, 20.0),
            (EventKind.PROGRESS, 40.0),
            (EventKind.UPLOAD, {"cancelled": True}),
        ]
        assert transport.aborted == 1
        assert manager.get_session("u2") is None

        await manager.stop()
        await bridge.stop()
        await dispatcher.stop()

    @pytest.mark.asyncio
    async def test_cancel_from_terminal_subscriber_is_noop(self, publisher):
        manager = make_manager(publisher)
        original_publish = publisher.publish

        async def publish_and_cancel(event):
            await original_publish(event)
            if event.is_terminal:
                await manager.handle_cancel(CancelCommand(upload_id=event.upload_id))

        publisher.publish = publish_and_cancel
        await manager.start()

        await manager.handle_upload(upload("u2"))
        await manager.drain()

        events = terminal_events(publisher.for_upload("u2"))
        assert len(events) == 1
        assert events[0].data == {"reference": "ref-1"}

        await manager.stop()


class TestLifecycle:
    """Test cases for eviction, shutdown and the file browser."""

    @pytest.mark.asyncio
    async def test_evict_ready_session(self, manager, publisher):
        await manager.handle_encode(encode("u1"))
        await manager.drain()

        assert manager.evict("u1") is True
        assert manager.get_session("u1") is None
        assert manager.evict("u1") is False

    @pytest.mark.asyncio
    async def test_evict_refuses_in_flight(self, publisher):
        hold = asyncio.Event()
        manager = make_manager(publisher, transport=FakeTransport(hold=hold))
        await manager.start()

        await manager.handle_upload(upload("u2"))

        assert manager.evict("u2") is False

        hold.set()
        await manager.drain()
        await manager.stop()

    @pytest.mark.asyncio
    async def test_stop_abandons_without_events(self, publisher):
        hold = asyncio.Event()
        transport = FakeTransport(hold=hold)
        manager = make_manager(publisher, transport=transport)
        await manager.start()

        await manager.handle_upload(upload("u2"))
        await asyncio.sleep(0)
        count = len(publisher.events)

        await manager.stop()

        assert len(publisher.events) == count
        assert manager.list_sessions() == []
        metrics = await manager.get_metrics()
        assert metrics['abandoned'] == 1

    @pytest.mark.asyncio
    async def test_health_reports_sessions(self, manager):
        await manager.handle_encode(encode("u1"))
        await manager.drain()

        health = await manager.check_health()

        assert health['healthy'] is True
        assert health['details']['live_sessions'] == 1
        assert health['details']['encoded'] == 1

    @pytest.mark.asyncio
    async def test_open_file_browser(self, publisher):
        browser = ElementFileBrowser()
        opened = []
        browser.register_element("picker", lambda: opened.append(True))
        manager = make_manager(publisher, file_browser=browser)

        await manager.handle_open_file_browser(OpenFileBrowserCommand(element_id="picker"))
        await manager.handle_open_file_browser(OpenFileBrowserCommand(element_id="other"))

        assert opened == [True]

    @pytest.mark.asyncio
    async def test_open_file_browser_without_browser(self, manager, publisher):
        await manager.handle_open_file_browser(OpenFileBrowserCommand(element_id="picker"))

        assert publisher.events == []
