"""
aiohttp upload transport.

Issues one HTTP request per transfer, either a multipart form POST or a raw
body PUT depending on the destination. The body is streamed in chunks so
progress can be reported as it is sent.
"""

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Dict, Optional

import aiohttp

from ....core.domain.attachments import BodyEncoding
from ....core.exceptions import TransportFailure
from ....core.interfaces.lifecycle import IComponent
from ....core.interfaces.upload import (
    IUploadTransport, ProgressCallback, TransportRequest, TransportResponse
)

logger = logging.getLogger(__name__)


class _BufferWriter:
    """Collects what an aiohttp payload writes."""

    def __init__(self) -> None:
        self.buffer = bytearray()

    async def write(self, chunk: bytes) -> None:
        self.buffer.extend(chunk)


def _metadata_value(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value)


class AiohttpUploadTransport(IComponent, IUploadTransport):
    """Upload transport backed by an aiohttp client session."""

    def __init__(self, chunk_size: int = 64 * 1024,
                 request_timeout: Optional[float] = None) -> None:
        """
        Initialize the transport.

        Args:
            chunk_size: Bytes sent between two progress ticks
            request_timeout: Total request timeout in seconds (None = no timeout)
        """
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")

        self._chunk_size = chunk_size
        self._timeout = aiohttp.ClientTimeout(total=request_timeout)
        self._session: Optional[aiohttp.ClientSession] = None
        self._running = False

        self._metrics: Dict[str, Any] = {
            'requests_sent': 0,
            'requests_failed': 0,
            'bytes_sent': 0
        }

    @property
    def name(self) -> str:
        """Get component name."""
        return "UploadTransport"

    async def start(self) -> None:
        self._running = True
        logger.info("Upload transport started")

    async def stop(self) -> None:
        self._running = False
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
        logger.info("Upload transport stopped")

    async def check_health(self) -> Dict[str, Any]:
        return {
            'healthy': True,
            'status': 'running' if self._running else 'stopped',
            'details': {
                'session_open': self._session is not None and not self._session.closed,
                **self._metrics
            }
        }

    def _get_session(self) -> aiohttp.ClientSession:
        # Created lazily so it binds to the loop that actually sends
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def _build_body(self, request: TransportRequest):
        """Return (body bytes, content type) for the request's encoding."""
        destination = request.destination

        if destination.body_encoding is BodyEncoding.RAW:
            content_type = destination.headers.get("Content-Type", request.content_type)
            return request.body, content_type

        form = aiohttp.FormData()
        form.add_field(
            destination.file_field,
            request.body,
            filename=request.file_name or "blob",
            content_type=request.content_type
        )
        if request.additional_data is not None:
            form.add_field(destination.metadata_field,
                           _metadata_value(request.additional_data))

        writer = form()
        buffer = _BufferWriter()
        await writer.write(buffer)
        return bytes(buffer.buffer), writer.content_type

    async def _stream(self, body: bytes,
                      on_progress: Optional[ProgressCallback]) -> AsyncIterator[bytes]:
        total = len(body)
        sent = 0
        while sent < total:
            chunk = body[sent:sent + self._chunk_size]
            yield chunk
            sent += len(chunk)
            self._metrics['bytes_sent'] += len(chunk)
            if on_progress is not None:
                await on_progress(sent, total)

    async def send(self, request: TransportRequest,
                   on_progress: Optional[ProgressCallback] = None) -> TransportResponse:
        """Transmit a request; cancelling the calling task aborts it."""
        body, content_type = await self._build_body(request)

        headers = dict(request.destination.headers)
        headers["Content-Type"] = content_type
        headers["Content-Length"] = str(len(body))

        method = request.destination.method.value
        url = request.destination.url
        logger.debug(f"{method} {url} ({len(body)} bytes)")

        self._metrics['requests_sent'] += 1
        try:
            async with self._get_session().request(
                method, url, data=self._stream(body, on_progress), headers=headers
            ) as response:
                payload = await response.read()
                return TransportResponse(
                    status=response.status,
                    reason=response.reason or "",
                    body=payload,
                    headers=dict(response.headers)
                )

        except asyncio.TimeoutError as e:
            self._metrics['requests_failed'] += 1
            raise TransportFailure("Upload timed out") from e

        except aiohttp.ClientError as e:
            self._metrics['requests_failed'] += 1
            raise TransportFailure(str(e) or type(e).__name__) from e

    async def get_metrics(self) -> Dict[str, Any]:
        return dict(self._metrics)
