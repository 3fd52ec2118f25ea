"""
In-memory attachment registry.

The mapping is shared by every request handler. FastAPI runs synchronous
endpoints in a thread pool, so reads and writes go through a lock.
"""

import logging
import threading
from dataclasses import replace
from typing import Dict, List

from ...core.domain.attachments import Attachment
from ...core.exceptions import DuplicateReference, NotFound
from ...core.interfaces.storage import IAttachmentRegistry

logger = logging.getLogger(__name__)


class InMemoryAttachmentRegistry(IAttachmentRegistry):
    """Reference -> attachment mapping kept in insertion order."""

    def __init__(self) -> None:
        self._attachments: Dict[str, Attachment] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._attachments)

    def __contains__(self, reference: object) -> bool:
        with self._lock:
            return reference in self._attachments

    def list(self) -> List[Attachment]:
        with self._lock:
            return list(self._attachments.values())

    def get(self, reference: str) -> Attachment:
        with self._lock:
            attachment = self._attachments.get(reference)
        if attachment is None:
            raise NotFound(reference)
        return attachment

    def create(self, attachment: Attachment) -> Attachment:
        with self._lock:
            if attachment.reference in self._attachments:
                raise DuplicateReference(attachment.reference)
            self._attachments[attachment.reference] = attachment

        logger.info(f"Registered attachment {attachment.reference} ({attachment.file_name})")
        return attachment

    def put(self, reference: str, attachment: Attachment) -> Attachment:
        """Replace an attachment in full; the stored reference is always ``reference``."""
        if attachment.reference != reference:
            attachment = replace(attachment, reference=reference)

        with self._lock:
            if reference not in self._attachments:
                raise NotFound(reference)
            self._attachments[reference] = attachment

        logger.info(f"Replaced attachment {reference}")
        return attachment

    def delete(self, reference: str) -> Attachment:
        with self._lock:
            attachment = self._attachments.pop(reference, None)
        if attachment is None:
            raise NotFound(reference)

        logger.info(f"Deleted attachment {reference}")
        return attachment

    def clear(self) -> None:
        with self._lock:
            self._attachments.clear()
