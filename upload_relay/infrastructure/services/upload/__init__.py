"""
Client-side upload services.

This module provides the file content reader, the HTTP transport and the
upload session manager that drives encode -> transmit -> terminal outcome.
"""

from .browser import ElementFileBrowser
from .codec import DecodedPayload, decode_data_uri, encode_data_uri
from .manager import DEFAULT_ACCEPTED_STATUSES, UploadSessionManager
from .reader import FileContentReader
from .transport import AiohttpUploadTransport

__all__ = [
    "AiohttpUploadTransport",
    "DEFAULT_ACCEPTED_STATUSES",
    "DecodedPayload",
    "ElementFileBrowser",
    "FileContentReader",
    "UploadSessionManager",
    "decode_data_uri",
    "encode_data_uri",
]
