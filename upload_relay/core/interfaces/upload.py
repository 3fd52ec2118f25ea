"""
Upload service interfaces.

This module defines the contracts for the client-side upload pipeline:
reading files, transmitting payloads and managing upload sessions.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..domain.attachments import UploadDestination
from ..domain.messages import (
    CancelCommand, EncodeCommand, OpenFileBrowserCommand, UploadCommand
)
from ..domain.sessions import FileHandle, UploadSession
from .lifecycle import IComponent

ProgressCallback = Callable[[int, Optional[int]], Awaitable[None]]


@dataclass
class TransportRequest:
    """One network transfer of decoded bytes to a destination."""
    destination: UploadDestination
    body: bytes = field(repr=False)
    content_type: str = "application/octet-stream"
    file_name: Optional[str] = None
    additional_data: Any = None


@dataclass
class TransportResponse:
    """Response of a completed network transfer."""
    status: int
    reason: str = ""
    body: bytes = field(default=b"", repr=False)
    headers: Dict[str, str] = field(default_factory=dict)

    def text(self, encoding: str = "utf-8") -> str:
        return self.body.decode(encoding, errors="replace")


class IFileContentReader(ABC):
    """Interface for reading a file into an encoded representation."""

    @abstractmethod
    async def read(self, upload_id: str, file: FileHandle) -> str:
        """
        Read a file into a base64 data URI.

        Args:
            upload_id: Correlation id, used for logging and errors
            file: File to read

        Returns:
            Data URI of the file's bytes

        Raises:
            ReadFailure: If the file cannot be read
        """
        pass


class IUploadTransport(ABC):
    """Interface for issuing a single network transfer."""

    @abstractmethod
    async def send(self, request: TransportRequest,
                   on_progress: Optional[ProgressCallback] = None) -> TransportResponse:
        """
        Transmit a request and return the response, whatever its status.

        Cancelling the awaiting task aborts the transfer.

        Args:
            request: Transfer to perform
            on_progress: Awaited with (bytes_sent, total_bytes) per tick

        Raises:
            TransportFailure: On network error
        """
        pass


class IFileBrowser(ABC):
    """Interface for triggering a native file picker bound to an element."""

    @abstractmethod
    def register_element(self, element_id: str, picker: Callable[[], Any]) -> None:
        """Bind a picker callback to an element id."""
        pass

    @abstractmethod
    async def open(self, element_id: str) -> bool:
        """
        Open the picker for an element.

        Returns:
            True if the element exists and its picker was triggered
        """
        pass


class IUploadSessionManager(IComponent):
    """Interface for the per-upload state machine driver."""

    @abstractmethod
    async def handle_encode(self, command: EncodeCommand) -> None:
        """Start encoding a file for an upload."""
        pass

    @abstractmethod
    async def handle_upload(self, command: UploadCommand) -> None:
        """Start transmitting a payload for an upload."""
        pass

    @abstractmethod
    async def handle_cancel(self, command: CancelCommand) -> None:
        """Abort an in-flight upload; a no-op for unknown or settled uploads."""
        pass

    @abstractmethod
    async def handle_open_file_browser(self, command: OpenFileBrowserCommand) -> None:
        """Trigger the file picker bound to an element."""
        pass

    @abstractmethod
    def get_session(self, upload_id: str) -> Optional[UploadSession]:
        """Get the live session for an upload id."""
        pass

    @abstractmethod
    def list_sessions(self) -> List[UploadSession]:
        """List live sessions."""
        pass

    @abstractmethod
    def evict(self, upload_id: str) -> bool:
        """Drop a live session that is not in flight, without emitting events."""
        pass
