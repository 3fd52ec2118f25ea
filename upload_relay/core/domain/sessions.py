"""
Upload session domain models.

An upload session tracks one file from encoding through transmission to a
terminal outcome. Terminal phases are absorbing: once a session reaches one
it accepts no further transitions.
"""

import asyncio
import mimetypes
import os
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Union

from .attachments import UploadDestination


class UploadPhase(Enum):
    """Upload session phase."""
    CREATED = "created"
    ENCODING = "encoding"
    READY = "ready"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_PHASES


TERMINAL_PHASES: FrozenSet[UploadPhase] = frozenset({
    UploadPhase.COMPLETED,
    UploadPhase.FAILED,
    UploadPhase.CANCELLED,
})

_TRANSITIONS: Dict[UploadPhase, FrozenSet[UploadPhase]] = {
    UploadPhase.CREATED: frozenset({UploadPhase.ENCODING, UploadPhase.READY}),
    UploadPhase.ENCODING: frozenset({UploadPhase.READY, UploadPhase.FAILED}),
    UploadPhase.READY: frozenset({UploadPhase.UPLOADING, UploadPhase.FAILED}),
    UploadPhase.UPLOADING: frozenset({
        UploadPhase.COMPLETED, UploadPhase.FAILED, UploadPhase.CANCELLED
    }),
    UploadPhase.COMPLETED: frozenset(),
    UploadPhase.FAILED: frozenset(),
    UploadPhase.CANCELLED: frozenset(),
}


class InvalidTransition(RuntimeError):
    """Raised when a session is moved along an edge the state machine lacks."""

    def __init__(self, upload_id: str, current: UploadPhase, target: UploadPhase) -> None:
        self.upload_id = upload_id
        self.current = current
        self.target = target
        super().__init__(
            f"Upload {upload_id} cannot move from {current.value} to {target.value}")


@dataclass
class FileHandle:
    """A local file reference: either a path on disk or in-memory bytes."""

    name: str
    path: Optional[str] = None
    content: Optional[bytes] = None
    content_type: Optional[str] = None

    @classmethod
    def from_path(cls, path: Union[str, 'os.PathLike[str]'],
                  content_type: Optional[str] = None) -> 'FileHandle':
        path = os.fspath(path)
        return cls(name=os.path.basename(path), path=path, content_type=content_type)

    @classmethod
    def from_bytes(cls, name: str, content: bytes,
                   content_type: Optional[str] = None) -> 'FileHandle':
        return cls(name=name, content=content, content_type=content_type)

    def guess_content_type(self, default: str = "application/octet-stream") -> str:
        """Return the declared content type, or one guessed from the name."""
        if self.content_type:
            return self.content_type
        guessed, _ = mimetypes.guess_type(self.name)
        return guessed or default


@dataclass
class UploadSession:
    """State of one upload, owned exclusively by the session manager."""

    upload_id: str
    phase: UploadPhase = UploadPhase.CREATED
    destination: Optional[UploadDestination] = None
    payload: Union[str, bytes, None] = field(default=None, repr=False)
    additional_data: Any = None
    cancel_requested: bool = False
    progress: float = 0.0
    error: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    task: Optional['asyncio.Task[None]'] = field(default=None, repr=False, compare=False)

    @property
    def is_terminal(self) -> bool:
        return self.phase.is_terminal

    @property
    def in_flight(self) -> bool:
        return self.phase is UploadPhase.UPLOADING

    def can_transition(self, target: UploadPhase) -> bool:
        return target in _TRANSITIONS[self.phase]

    def transition(self, target: UploadPhase) -> None:
        """
        Move the session to ``target``.

        Raises:
            InvalidTransition: If the state machine has no such edge
        """
        if not self.can_transition(target):
            raise InvalidTransition(self.upload_id, self.phase, target)
        self.phase = target
        self.updated_at = time.time()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uploadId": self.upload_id,
            "phase": self.phase.value,
            "destination": self.destination.to_dict() if self.destination else None,
            "progress": self.progress,
            "cancelRequested": self.cancel_requested,
            "error": self.error,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
