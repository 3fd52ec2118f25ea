"""
Exception taxonomy for the upload relay.

Per-session failures (read, decode, transport) are reported to the UI as
terminal failure events carrying ``str(error)``; server-side failures are
translated into HTTP status codes by the API routers.
"""

from typing import Any, Optional


class UploadRelayError(Exception):
    """Base class for all upload relay errors."""
    pass


class ReadFailure(UploadRelayError):
    """Raised when a local file cannot be read."""

    def __init__(self, upload_id: str, reason: str) -> None:
        self.upload_id = upload_id
        self.reason = reason
        super().__init__(reason)


class DecodeFailure(UploadRelayError):
    """Raised when a stored encoded payload is malformed."""
    pass


DecodeError = DecodeFailure


class TransportFailure(UploadRelayError):
    """
    Raised when a network transfer fails or is rejected.

    The message is composed from the status, status text and response body
    when they are available, e.g. ``"500; Internal Server Error; boom"``.
    """

    def __init__(
        self,
        reason: Optional[str] = None,
        status: Optional[int] = None,
        status_text: Optional[str] = None,
        body: Optional[str] = None
    ) -> None:
        self.status = status
        self.status_text = status_text
        self.body = body

        if reason is None:
            parts = [str(status) if status is not None else "", status_text or "", body or ""]
            reason = "; ".join(part for part in parts if part) or "Upload failed"

        self.reason = reason
        super().__init__(reason)


class NotFound(UploadRelayError):
    """Raised when a reference is absent from the registry or object store."""

    def __init__(self, reference: str, message: Optional[str] = None) -> None:
        self.reference = reference
        super().__init__(message or f"Unknown file reference: {reference}")


class ObjectStoreError(UploadRelayError):
    """Raised when the backing object store rejects an operation."""
    pass


class StoreUnavailable(ObjectStoreError):
    """Raised at startup when the object store credentials or config are absent."""
    pass


class DuplicateReference(UploadRelayError):
    """Raised when a reference would be issued or registered twice."""

    def __init__(self, reference: str) -> None:
        self.reference = reference
        super().__init__(f"Reference already issued: {reference}")


class SignedUploadRejected(UploadRelayError):
    """Raised when a capability upload has a bad signature, expired or was used."""
    pass


class UnknownCommandKind(UploadRelayError):
    """Raised when an inbound bridge message carries an unrecognized kind."""

    def __init__(self, kind: Any) -> None:
        self.kind = kind
        super().__init__(f"Unknown command kind: {kind!r}")


class MalformedCommand(UploadRelayError, ValueError):
    """Raised when an inbound bridge message is missing required fields."""

    def __init__(self, message: str, upload_id: Optional[str] = None) -> None:
        self.upload_id = upload_id
        super().__init__(message)
