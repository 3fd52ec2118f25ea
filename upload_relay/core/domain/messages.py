"""
Message Bridge command and event models.

Inbound commands and outbound events are closed sets of variants tagged by
a ``kind`` discriminator. ``parse_command`` turns a wire message (a JSON
object) into one of the command variants.
"""

import base64
import binascii
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, Mapping, Optional, Union

from ..exceptions import MalformedCommand, UnknownCommandKind
from .attachments import UploadDestination
from .sessions import FileHandle


class CommandKind(str, Enum):
    """Inbound command discriminator."""
    ENCODE = "encode"
    UPLOAD = "upload"
    CANCEL = "cancel"
    OPEN_FILE_BROWSER = "open-file-browser"


class EventKind(str, Enum):
    """Outbound event discriminator."""
    ENCODE = "encode"
    PROGRESS = "progress"
    UPLOAD = "upload"
    ERROR = "error"


@dataclass(frozen=True)
class EncodeCommand:
    """Read a file into a data URI; optionally chain an upload afterwards."""

    kind: ClassVar[CommandKind] = CommandKind.ENCODE

    upload_id: str
    file: FileHandle
    chain_to: Optional[UploadDestination] = None
    additional_data: Any = None


@dataclass(frozen=True)
class UploadCommand:
    """Transmit an encoded (or raw) payload to a destination."""

    kind: ClassVar[CommandKind] = CommandKind.UPLOAD

    upload_id: str
    destination: UploadDestination
    encoded_data: Union[str, bytes, None] = field(default=None, repr=False)
    additional_data: Any = None


@dataclass(frozen=True)
class CancelCommand:
    """Abort the in-flight transfer of an upload."""

    kind: ClassVar[CommandKind] = CommandKind.CANCEL

    upload_id: str


@dataclass(frozen=True)
class OpenFileBrowserCommand:
    """Trigger the native file picker bound to an element."""

    kind: ClassVar[CommandKind] = CommandKind.OPEN_FILE_BROWSER

    element_id: str


BridgeCommand = Union[EncodeCommand, UploadCommand, CancelCommand, OpenFileBrowserCommand]


@dataclass(frozen=True)
class BridgeEvent:
    """
    Outbound event delivered to the UI layer.

    Every event carries the originating ``upload_id`` so the UI can
    correlate it with the command that caused it.
    """

    kind: EventKind
    upload_id: Optional[str]
    data: Any = None
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: float = field(default_factory=time.time)

    @property
    def is_terminal(self) -> bool:
        """Whether this event ends its session (upload result or encode failure)."""
        if self.kind is EventKind.UPLOAD:
            return True
        return (self.kind is EventKind.ENCODE
                and isinstance(self.data, dict) and "error" in self.data)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "uploadId": self.upload_id,
            "data": self.data,
        }

    @classmethod
    def encoded(cls, upload_id: str, data_uri: str) -> 'BridgeEvent':
        return cls(EventKind.ENCODE, upload_id, data_uri)

    @classmethod
    def encode_failed(cls, upload_id: str, reason: str) -> 'BridgeEvent':
        return cls(EventKind.ENCODE, upload_id, {"error": reason})

    @classmethod
    def progress(cls, upload_id: str, percentage: float) -> 'BridgeEvent':
        return cls(EventKind.PROGRESS, upload_id, percentage)

    @classmethod
    def uploaded(cls, upload_id: str, response: Any) -> 'BridgeEvent':
        return cls(EventKind.UPLOAD, upload_id, response)

    @classmethod
    def upload_failed(cls, upload_id: str, reason: str) -> 'BridgeEvent':
        return cls(EventKind.UPLOAD, upload_id, {"error": reason})

    @classmethod
    def cancelled(cls, upload_id: str) -> 'BridgeEvent':
        return cls(EventKind.UPLOAD, upload_id, {"cancelled": True})

    @classmethod
    def rejected(cls, upload_id: Optional[str], reason: str) -> 'BridgeEvent':
        return cls(EventKind.ERROR, upload_id, {"error": reason})


def _require(payload: Mapping[str, Any], key: str, upload_id: Optional[str] = None) -> Any:
    value = payload.get(key)
    if value is None or value == "":
        raise MalformedCommand(f"Missing required field '{key}'", upload_id)
    return value


def _parse_file(value: Any, upload_id: str, allow_paths: bool) -> FileHandle:
    if isinstance(value, str):
        if not allow_paths:
            raise MalformedCommand("File paths are not accepted, send 'file.content'", upload_id)
        return FileHandle.from_path(value)

    if not isinstance(value, Mapping):
        raise MalformedCommand("Field 'file' must be a path or an object", upload_id)

    content = value.get("content")
    if content is not None:
        try:
            raw = base64.b64decode(content, validate=True)
        except (binascii.Error, ValueError, TypeError) as e:
            raise MalformedCommand(f"Field 'file.content' is not base64: {e}", upload_id)
        return FileHandle.from_bytes(
            name=value.get("name") or upload_id,
            content=raw,
            content_type=value.get("contentType"),
        )

    path = value.get("path")
    if not path:
        raise MalformedCommand("Field 'file' needs a 'path' or a 'content'", upload_id)
    if not allow_paths:
        raise MalformedCommand("File paths are not accepted, send 'file.content'", upload_id)

    handle = FileHandle.from_path(path, content_type=value.get("contentType"))
    if value.get("name"):
        handle.name = value["name"]
    return handle


def _parse_destination(payload: Mapping[str, Any], upload_id: str,
                       defaults: Optional[UploadDestination],
                       key: str = "destination") -> Optional[UploadDestination]:
    raw = payload.get(key)
    try:
        if isinstance(raw, Mapping):
            return UploadDestination.from_dict(dict(raw), defaults)
        if isinstance(raw, str):
            return UploadDestination.from_dict({"url": raw}, defaults)
        if payload.get("uploadUrl"):
            return UploadDestination.from_dict({"url": payload["uploadUrl"]}, defaults)
    except ValueError as e:
        raise MalformedCommand(f"Invalid destination: {e}", upload_id)
    return None


def parse_command(message: Mapping[str, Any],
                  default_destination: Optional[UploadDestination] = None,
                  allow_paths: bool = True) -> BridgeCommand:
    """
    Parse a wire message into a bridge command.

    Args:
        message: JSON object with a ``kind`` (or ``message``) discriminator
        default_destination: Settings used when an upload only names a URL
        allow_paths: Whether an encode may name a file on this host by path

    Returns:
        Parsed command variant

    Raises:
        UnknownCommandKind: If the discriminator is not a known kind
        MalformedCommand: If required fields are missing or invalid
    """
    if not isinstance(message, Mapping):
        raise MalformedCommand("Bridge message must be a JSON object")

    raw_kind = message.get("kind", message.get("message"))
    try:
        kind = CommandKind(raw_kind)
    except ValueError:
        raise UnknownCommandKind(raw_kind)

    payload: Dict[str, Any] = dict(message)
    nested = message.get("data")
    if isinstance(nested, Mapping):
        payload.update(nested)

    if kind is CommandKind.OPEN_FILE_BROWSER:
        return OpenFileBrowserCommand(element_id=str(_require(payload, "elementId")))

    upload_id = str(_require(payload, "uploadId"))

    if kind is CommandKind.CANCEL:
        return CancelCommand(upload_id=upload_id)

    if kind is CommandKind.ENCODE:
        return EncodeCommand(
            upload_id=upload_id,
            file=_parse_file(_require(payload, "file", upload_id), upload_id, allow_paths),
            chain_to=_parse_destination(payload, upload_id, default_destination, key="upload"),
            additional_data=payload.get("additionalData"),
        )

    destination = _parse_destination(payload, upload_id, default_destination)
    if destination is None:
        raise MalformedCommand("Upload needs an 'uploadUrl' or a 'destination'", upload_id)

    return UploadCommand(
        upload_id=upload_id,
        destination=destination,
        encoded_data=payload.get("encodedData", payload.get("base64Data")),
        additional_data=payload.get("additionalData"),
    )
