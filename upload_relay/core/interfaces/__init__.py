"""
Core interfaces defining the contracts for all major system components.
"""

from .lifecycle import IStartable, IStoppable, IHealthCheckable, IComponent
from .messaging import ICommandDispatcher, IEventPublisher, IMessageBridge
from .upload import (
    IFileBrowser, IFileContentReader, IUploadSessionManager, IUploadTransport,
    TransportRequest, TransportResponse
)
from .storage import IAttachmentRegistry, IObjectStore, ISignedUrlBroker, StoredObject

__all__ = [
    "IStartable",
    "IStoppable",
    "IHealthCheckable",
    "IComponent",
    "ICommandDispatcher",
    "IEventPublisher",
    "IMessageBridge",
    "IFileBrowser",
    "IFileContentReader",
    "IUploadSessionManager",
    "IUploadTransport",
    "TransportRequest",
    "TransportResponse",
    "IAttachmentRegistry",
    "IObjectStore",
    "ISignedUrlBroker",
    "StoredObject",
]
