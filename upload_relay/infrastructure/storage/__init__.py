"""
Server-side storage: attachment registry, object stores and signed-URL broker.
"""

from .broker import DEFAULT_EXPIRE_SECONDS, SignedUrlBroker
from .object_store import InMemoryObjectStore, S3ObjectStore, build_object_store
from .registry import InMemoryAttachmentRegistry

__all__ = [
    "DEFAULT_EXPIRE_SECONDS",
    "InMemoryAttachmentRegistry",
    "InMemoryObjectStore",
    "S3ObjectStore",
    "SignedUrlBroker",
    "build_object_store",
]
