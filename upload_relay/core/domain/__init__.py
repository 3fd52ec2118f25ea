"""
Domain models representing attachments, upload sessions and bridge messages.

This module contains pure domain models without framework dependencies.
"""

from .attachments import (
    Attachment, BodyEncoding, ResponseFormat, SignedUrlGrant,
    UploadDestination, UploadMethod
)
from .sessions import FileHandle, InvalidTransition, UploadPhase, UploadSession
from .messages import (
    BridgeCommand, BridgeEvent, CancelCommand, CommandKind, EncodeCommand,
    EventKind, OpenFileBrowserCommand, UploadCommand, parse_command
)

__all__ = [
    "Attachment",
    "BodyEncoding",
    "ResponseFormat",
    "SignedUrlGrant",
    "UploadDestination",
    "UploadMethod",
    "FileHandle",
    "InvalidTransition",
    "UploadPhase",
    "UploadSession",
    "BridgeCommand",
    "BridgeEvent",
    "CancelCommand",
    "CommandKind",
    "EncodeCommand",
    "EventKind",
    "OpenFileBrowserCommand",
    "UploadCommand",
    "parse_command",
]
