"""
Upload Session Manager implementation.

Drives each upload through encode -> transmit -> terminal outcome and
reports every step over the message bridge. Each running phase is an
asyncio task owned by its session; cancelling an upload cancels that task.

A session is removed from the lookup table *before* its terminal event is
published. A cancel delivered from inside a terminal event handler (or
arriving after the response was committed) therefore finds no live session
and is a no-op, which gives at most one terminal event per upload id.
"""

import asyncio
import json
import logging
from functools import partial
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from ....core.domain.attachments import ResponseFormat, UploadDestination
from ....core.domain.messages import (
    BridgeEvent, CancelCommand, CommandKind, EncodeCommand,
    OpenFileBrowserCommand, UploadCommand
)
from ....core.domain.sessions import UploadPhase, UploadSession
from ....core.exceptions import (
    ReadFailure, TransportFailure, UploadRelayError
)
from ....core.interfaces.messaging import ICommandDispatcher, IEventPublisher
from ....core.interfaces.upload import (
    IFileBrowser, IFileContentReader, IUploadSessionManager, IUploadTransport,
    TransportRequest, TransportResponse
)
from .codec import decode_data_uri

logger = logging.getLogger(__name__)

DEFAULT_ACCEPTED_STATUSES = frozenset({200, 201, 204})

EventFactory = Callable[[str, str], BridgeEvent]


class UploadSessionManager(IUploadSessionManager):
    """
    Per-upload state machine driver.

    Sessions are independent and share nothing but the lookup table keyed
    by upload id. All mutation happens on the event loop thread.
    """

    def __init__(
        self,
        bridge: IEventPublisher,
        reader: IFileContentReader,
        transport: IUploadTransport,
        file_browser: Optional[IFileBrowser] = None,
        accepted_statuses: Iterable[int] = DEFAULT_ACCEPTED_STATUSES
    ) -> None:
        self._bridge = bridge
        self._reader = reader
        self._transport = transport
        self._file_browser = file_browser
        self._accepted_statuses = frozenset(accepted_statuses)

        self._sessions: Dict[str, UploadSession] = {}
        self._tasks: Set['asyncio.Task[None]'] = set()
        self._running = False

        # Metrics
        self._metrics: Dict[str, Any] = {
            'sessions_started': 0,
            'uploads_started': 0,
            'encoded': 0,
            'completed': 0,
            'failed': 0,
            'cancelled': 0,
            'rejected': 0,
            'evicted': 0,
            'abandoned': 0
        }

    @property
    def name(self) -> str:
        """Get component name."""
        return "UploadSessionManager"

    def register_handlers(self, dispatcher: ICommandDispatcher) -> None:
        """Register this manager's handlers on a command dispatcher."""
        dispatcher.register_handler(CommandKind.ENCODE, self.handle_encode)
        dispatcher.register_handler(CommandKind.UPLOAD, self.handle_upload)
        dispatcher.register_handler(CommandKind.CANCEL, self.handle_cancel)
        dispatcher.register_handler(CommandKind.OPEN_FILE_BROWSER, self.handle_open_file_browser)

    async def start(self) -> None:
        """Start the upload session manager."""
        if self._running:
            return

        self._running = True
        logger.info("Upload session manager started")

    async def stop(self) -> None:
        """Stop the manager, abandoning live sessions without emitting events."""
        if not self._running:
            return

        self._running = False

        abandoned = list(self._sessions.values())
        self._sessions.clear()
        self._metrics['abandoned'] += len(abandoned)

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        logger.info(f"Upload session manager stopped ({len(abandoned)} sessions abandoned)")

    async def check_health(self) -> Dict[str, Any]:
        """Check upload session manager health."""
        return {
            'healthy': True,
            'status': 'running' if self._running else 'stopped',
            'details': {
                'live_sessions': len(self._sessions),
                'in_flight': sum(1 for s in self._sessions.values() if s.in_flight),
                'pending_tasks': len(self._tasks),
                **self._metrics
            }
        }

    async def get_metrics(self) -> Dict[str, Any]:
        return {**self._metrics, 'live_sessions': len(self._sessions)}

    def get_session(self, upload_id: str) -> Optional[UploadSession]:
        return self._sessions.get(upload_id)

    def list_sessions(self) -> List[UploadSession]:
        return list(self._sessions.values())

    def evict(self, upload_id: str) -> bool:
        """Drop a session that is not uploading. No event is emitted."""
        session = self._sessions.get(upload_id)
        if session is None or session.in_flight:
            return False

        del self._sessions[upload_id]
        if session.task is not None and not session.task.done():
            session.task.cancel()
        session.task = None

        self._metrics['evicted'] += 1
        logger.info(f"Evicted upload session {upload_id} ({session.phase.value})")
        return True

    async def drain(self) -> None:
        """Wait until every phase task, including chained ones, has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # Command handlers

    async def handle_encode(self, command: EncodeCommand) -> None:
        """Start reading a file for an upload."""
        self._ensure_running()

        upload_id = command.upload_id
        existing = self._sessions.get(upload_id)
        if existing is not None:
            await self._reject(
                upload_id, f"Upload {upload_id} already has a live session ({existing.phase.value})")
            return

        session = UploadSession(upload_id=upload_id, additional_data=command.additional_data)
        session.transition(UploadPhase.ENCODING)
        self._sessions[upload_id] = session
        self._metrics['sessions_started'] += 1

        logger.info(f"Encoding {command.file.name} for upload {upload_id}")
        session.task = self._spawn(self._run_encode(session, command))

    async def handle_upload(self, command: UploadCommand) -> None:
        """Start transmitting a payload for an upload."""
        self._ensure_running()

        upload_id = command.upload_id
        session = self._sessions.get(upload_id)

        if session is None:
            if command.encoded_data is None:
                await self._reject(upload_id, f"Upload {upload_id} has no encoded data")
                return

            session = UploadSession(upload_id=upload_id, payload=command.encoded_data)
            session.transition(UploadPhase.READY)
            self._sessions[upload_id] = session
            self._metrics['sessions_started'] += 1

        elif session.phase is UploadPhase.READY:
            if command.encoded_data is not None:
                session.payload = command.encoded_data

        else:
            await self._reject(
                upload_id, f"Upload {upload_id} already has a live session ({session.phase.value})")
            return

        self._begin_upload(session, command.destination, command.additional_data)

    async def handle_cancel(self, command: CancelCommand) -> None:
        """Abort an in-flight upload. Unknown or settled uploads are ignored."""
        upload_id = command.upload_id
        session = self._sessions.get(upload_id)

        if session is None or not session.in_flight:
            logger.debug(f"Ignoring cancel for upload {upload_id}: nothing in flight")
            return

        session.cancel_requested = True
        session.transition(UploadPhase.CANCELLED)
        del self._sessions[upload_id]

        task = session.task
        session.task = None
        current = asyncio.current_task()

        if task is not None and task is not current and not task.done():
            task.cancel()

        self._metrics['cancelled'] += 1
        logger.info(f"Upload {upload_id} cancelled")
        await self._publish(BridgeEvent.cancelled(upload_id))

    async def handle_open_file_browser(self, command: OpenFileBrowserCommand) -> None:
        """Trigger the file picker bound to an element, if any."""
        if self._file_browser is None:
            logger.warning(f"No file browser configured, ignoring element {command.element_id}")
            return

        if not await self._file_browser.open(command.element_id):
            logger.debug(f"No file picker bound to element {command.element_id}")

    # Phases

    async def _run_encode(self, session: UploadSession, command: EncodeCommand) -> None:
        upload_id = session.upload_id
        try:
            encoded = await self._reader.read(upload_id, command.file)
        except ReadFailure as e:
            await self._fail(session, e.reason, BridgeEvent.encode_failed)
            return
        except Exception as e:
            logger.exception(f"Unexpected error encoding upload {upload_id}")
            await self._fail(session, str(e) or type(e).__name__, BridgeEvent.encode_failed)
            return

        if self._sessions.get(upload_id) is not session:
            return

        session.payload = encoded
        session.transition(UploadPhase.READY)
        session.task = None
        self._metrics['encoded'] += 1

        logger.info(f"Upload {upload_id} encoded")
        await self._publish(BridgeEvent.encoded(upload_id, encoded))

        if command.chain_to is not None and self._sessions.get(upload_id) is session \
                and session.phase is UploadPhase.READY:
            self._begin_upload(session, command.chain_to, command.additional_data)

    def _begin_upload(self, session: UploadSession, destination: UploadDestination,
                      additional_data: Any) -> None:
        session.destination = destination
        if additional_data is not None:
            session.additional_data = additional_data
        session.progress = 0.0
        session.transition(UploadPhase.UPLOADING)
        self._metrics['uploads_started'] += 1

        logger.info(f"Uploading {session.upload_id} to {destination.url} "
                    f"({destination.method.value}, {destination.body_encoding.value})")
        session.task = self._spawn(self._run_upload(session))

    def _build_request(self, session: UploadSession) -> TransportRequest:
        payload = session.payload
        if isinstance(payload, (bytes, bytearray)):
            body, content_type = bytes(payload), "application/octet-stream"
        else:
            decoded = decode_data_uri(payload)
            body, content_type = decoded.data, decoded.content_type

        additional = session.additional_data
        return TransportRequest(
            destination=session.destination,
            body=body,
            content_type=content_type,
            file_name=additional if isinstance(additional, str) else None,
            additional_data=additional
        )

    async def _run_upload(self, session: UploadSession) -> None:
        upload_id = session.upload_id
        try:
            request = self._build_request(session)
            response = await self._transport.send(
                request, on_progress=partial(self._on_progress, session))

        except UploadRelayError as e:
            await self._fail(session, str(e), BridgeEvent.upload_failed)
            return

        except Exception as e:
            logger.exception(f"Unexpected error uploading {upload_id}")
            await self._fail(session, str(e) or type(e).__name__, BridgeEvent.upload_failed)
            return

        if session.phase is not UploadPhase.UPLOADING:
            return

        if response.status not in self._accepted_statuses:
            failure = TransportFailure(
                status=response.status, status_text=response.reason, body=response.text())
            await self._fail(session, failure.reason, BridgeEvent.upload_failed)
            return

        try:
            data = self._parse_response(response, session.destination.response_format)
        except ValueError as e:
            await self._fail(session, f"Invalid response body: {e}", BridgeEvent.upload_failed)
            return

        await self._complete(session, data)

    async def _on_progress(self, session: UploadSession, sent: int, total: Optional[int]) -> None:
        if session.phase is not UploadPhase.UPLOADING or not total:
            return

        percentage = min(100.0, max(0.0, sent * 100.0 / total))
        session.progress = percentage

        logger.debug(f"Upload {session.upload_id} progress {percentage:.1f}%")
        await self._publish(BridgeEvent.progress(session.upload_id, percentage))

        # Cancelled by a subscriber of this progress event
        current = asyncio.current_task()
        if session.cancel_requested and current is not None:
            current.cancel()

    @staticmethod
    def _parse_response(response: TransportResponse, response_format: ResponseFormat) -> Any:
        if response_format is ResponseFormat.NONE:
            return None

        text = response.text()
        if response_format is ResponseFormat.TEXT:
            return text

        if not text.strip():
            return None
        return json.loads(text)

    # Terminal transitions

    async def _fail(self, session: UploadSession, reason: str, factory: EventFactory) -> None:
        upload_id = session.upload_id
        if self._sessions.get(upload_id) is not session or session.is_terminal:
            return

        session.error = reason
        session.transition(UploadPhase.FAILED)
        del self._sessions[upload_id]
        session.task = None

        self._metrics['failed'] += 1
        logger.error(f"Upload {upload_id} failed: {reason}")
        await self._publish(factory(upload_id, reason))

    async def _complete(self, session: UploadSession, data: Any) -> None:
        upload_id = session.upload_id
        if self._sessions.get(upload_id) is not session or session.is_terminal:
            return

        session.transition(UploadPhase.COMPLETED)
        del self._sessions[upload_id]
        session.task = None

        self._metrics['completed'] += 1
        logger.info(f"Upload {upload_id} completed")
        await self._publish(BridgeEvent.uploaded(upload_id, data))

    # Helpers

    async def _reject(self, upload_id: str, reason: str) -> None:
        self._metrics['rejected'] += 1
        logger.warning(reason)
        await self._publish(BridgeEvent.rejected(upload_id, reason))

    async def _publish(self, event: BridgeEvent) -> None:
        await self._bridge.publish(event)

    def _ensure_running(self) -> None:
        if not self._running:
            raise RuntimeError("Upload session manager is not running")

    def _spawn(self, coro: Any) -> 'asyncio.Task[None]':
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: 'asyncio.Task[None]') -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return

        error = task.exception()
        if error is not None:
            logger.error(f"Upload task ended with an unhandled error: {error!r}")
