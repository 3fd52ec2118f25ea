"""
Storage interfaces for the server-side collaborators: the attachment
registry, the backing object store and the signed-URL broker.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Tuple

from ..domain.attachments import Attachment, SignedUrlGrant, UploadDestination


@dataclass
class StoredObject:
    """Bytes of one stored object, delivered as an iterator of chunks."""
    reference: str
    content_type: str
    chunks: Iterator[bytes] = field(repr=False)
    content_length: Optional[int] = None


class IAttachmentRegistry(ABC):
    """Mapping of reference -> attachment metadata, in insertion order."""

    @abstractmethod
    def list(self) -> List[Attachment]:
        """Return all attachments in insertion order."""
        pass

    @abstractmethod
    def get(self, reference: str) -> Attachment:
        """
        Get an attachment.

        Raises:
            NotFound: If the reference is unknown
        """
        pass

    @abstractmethod
    def create(self, attachment: Attachment) -> Attachment:
        """
        Record a new attachment.

        Raises:
            DuplicateReference: If the reference is already registered
        """
        pass

    @abstractmethod
    def put(self, reference: str, attachment: Attachment) -> Attachment:
        """
        Replace an attachment in full. The reference itself never changes.

        Raises:
            NotFound: If the reference is unknown
        """
        pass

    @abstractmethod
    def delete(self, reference: str) -> Attachment:
        """
        Remove an attachment and return it.

        Raises:
            NotFound: If the reference is unknown
        """
        pass


class IObjectStore(ABC):
    """Backing store for attachment bytes."""

    @abstractmethod
    def presign_upload(self, reference: str, content_type: str,
                       expires_in: int) -> UploadDestination:
        """Compute a time-bounded, capability-scoped upload destination."""
        pass

    @abstractmethod
    def put_object(self, reference: str, data: bytes, content_type: str) -> None:
        """Store bytes under a reference."""
        pass

    @abstractmethod
    def get_object(self, reference: str) -> StoredObject:
        """
        Fetch the bytes stored under a reference.

        Raises:
            NotFound: If nothing is stored under the reference
        """
        pass

    @abstractmethod
    def delete_object(self, reference: str) -> None:
        """Remove the bytes stored under a reference."""
        pass


class ISignedUrlBroker(ABC):
    """Issuer of single-use upload destinations."""

    @abstractmethod
    def issue(
        self,
        content_type: str,
        file_name: str,
        reference: Optional[str] = None,
        uploaded_by: Optional[str] = None
    ) -> Tuple[SignedUrlGrant, Attachment]:
        """
        Issue a signed upload URL and record a pending attachment.

        Raises:
            DuplicateReference: If ``reference`` was issued before
        """
        pass

    @abstractmethod
    def receive(
        self,
        file_name: str,
        content_type: str,
        data: bytes,
        uploaded_by: Optional[str] = None
    ) -> Attachment:
        """Store bytes sent directly to the server under a fresh reference."""
        pass
