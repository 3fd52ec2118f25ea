"""
Signed-URL Broker.

Issues time-bounded, single-use upload destinations against the object
store and records a pending attachment for each one.
"""

import logging
import threading
import uuid
from datetime import timedelta
from typing import Any, Dict, Optional, Set, Tuple

from ...core.domain.attachments import Attachment, SignedUrlGrant, utc_now
from ...core.exceptions import DuplicateReference, ObjectStoreError
from ...core.interfaces.lifecycle import IComponent
from ...core.interfaces.storage import IAttachmentRegistry, IObjectStore, ISignedUrlBroker

logger = logging.getLogger(__name__)

DEFAULT_EXPIRE_SECONDS = 300


class SignedUrlBroker(IComponent, ISignedUrlBroker):
    """
    Issuer of signed upload URLs.

    Every reference the broker has handed out is remembered for its
    lifetime, so a reference is never issued twice even after its
    attachment was deleted.
    """

    def __init__(
        self,
        registry: IAttachmentRegistry,
        store: IObjectStore,
        expire_seconds: int = DEFAULT_EXPIRE_SECONDS
    ) -> None:
        if expire_seconds <= 0:
            raise ValueError("expire_seconds must be positive")

        self._registry = registry
        self._store = store
        self._expire_seconds = expire_seconds
        self._issued: Set[str] = set()
        self._lock = threading.RLock()
        self._running = False

        self._metrics: Dict[str, Any] = {
            'grants_issued': 0,
            'uploads_received': 0,
            'issue_failures': 0
        }

    @property
    def name(self) -> str:
        """Get component name."""
        return "SignedUrlBroker"

    @property
    def expire_seconds(self) -> int:
        return self._expire_seconds

    @property
    def store(self) -> IObjectStore:
        return self._store

    async def start(self) -> None:
        self._running = True
        logger.info(f"Signed URL broker started ({type(self._store).__name__}, "
                    f"URLs expire after {self._expire_seconds}s)")

    async def stop(self) -> None:
        self._running = False
        logger.info("Signed URL broker stopped")

    async def check_health(self) -> Dict[str, Any]:
        return {
            'healthy': True,
            'status': 'running' if self._running else 'stopped',
            'details': {
                'store': type(self._store).__name__,
                'expire_seconds': self._expire_seconds,
                'references_issued': len(self._issued),
                **self._metrics
            }
        }

    def _claim_reference(self, reference: Optional[str]) -> str:
        if reference is not None:
            if reference in self._issued or reference in self._registry:
                raise DuplicateReference(reference)
        else:
            reference = str(uuid.uuid4())
            while reference in self._issued:
                reference = str(uuid.uuid4())

        self._issued.add(reference)
        return reference

    def issue(
        self,
        content_type: str,
        file_name: str,
        reference: Optional[str] = None,
        uploaded_by: Optional[str] = None
    ) -> Tuple[SignedUrlGrant, Attachment]:
        """
        Issue a signed upload URL and record a pending attachment.

        Args:
            content_type: Content type the upload must be sent with
            file_name: Original file name
            reference: Caller-chosen reference; generated when omitted
            uploaded_by: Uploader identity, stored as-is

        Returns:
            The grant and the attachment that was registered

        Raises:
            DuplicateReference: If ``reference`` was issued before
            ObjectStoreError: If the store cannot sign the URL
        """
        with self._lock:
            reference = self._claim_reference(reference)

            try:
                destination = self._store.presign_upload(
                    reference, content_type, self._expire_seconds)
            except ObjectStoreError:
                self._metrics['issue_failures'] += 1
                raise

            grant = SignedUrlGrant(
                reference=reference,
                destination=destination,
                expires_at=utc_now() + timedelta(seconds=self._expire_seconds),
            )
            attachment = self._registry.create(Attachment(
                reference=reference,
                file_name=file_name,
                content_type=content_type,
                uploaded_by=uploaded_by,
            ))
            self._metrics['grants_issued'] += 1

        logger.info(f"Issued signed URL for {reference} ({file_name}, {content_type})")
        return grant, attachment

    def receive(
        self,
        file_name: str,
        content_type: str,
        data: bytes,
        uploaded_by: Optional[str] = None
    ) -> Attachment:
        """Store bytes posted directly to the server and register them."""
        with self._lock:
            reference = self._claim_reference(None)
            self._store.put_object(reference, data, content_type)
            attachment = self._registry.create(Attachment(
                reference=reference,
                file_name=file_name,
                content_type=content_type,
                uploaded_by=uploaded_by,
            ))
            self._metrics['uploads_received'] += 1

        logger.info(f"Received {file_name} as {reference} ({len(data)} bytes)")
        return attachment

    async def get_metrics(self) -> Dict[str, Any]:
        return {**self._metrics, 'references_issued': len(self._issued)}
