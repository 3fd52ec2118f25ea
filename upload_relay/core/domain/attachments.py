"""
Attachment domain models.

This module defines the attachment metadata kept by the registry, the
destination a client uploads to, and the signed-URL grant the broker issues.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


def utc_now() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    raise ValueError(f"Invalid timestamp: {value!r}")


class UploadMethod(str, Enum):
    """HTTP verb used for a transfer."""
    POST = "POST"
    PUT = "PUT"


class BodyEncoding(str, Enum):
    """How the file bytes are placed in the request body."""
    MULTIPART = "multipart"
    RAW = "raw"


class ResponseFormat(str, Enum):
    """How a successful response body is handed back to the UI."""
    JSON = "json"
    TEXT = "text"
    NONE = "none"


@dataclass(frozen=True)
class UploadDestination:
    """
    Where and how a payload is transmitted.

    The destination is provisioned together with the upload URL, so the
    session manager never has to guess the verb or the body encoding.
    """

    url: str
    method: UploadMethod = UploadMethod.POST
    body_encoding: BodyEncoding = BodyEncoding.MULTIPART
    response_format: ResponseFormat = ResponseFormat.JSON
    headers: Dict[str, str] = field(default_factory=dict)
    file_field: str = "data"
    metadata_field: str = "fileName"

    def __post_init__(self) -> None:
        if not self.url:
            raise ValueError("Destination url cannot be empty")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "method": self.method.value,
            "bodyEncoding": self.body_encoding.value,
            "responseFormat": self.response_format.value,
            "headers": dict(self.headers),
            "fileField": self.file_field,
            "metadataField": self.metadata_field,
        }

    @classmethod
    def from_dict(
        cls,
        data: Dict[str, Any],
        defaults: Optional['UploadDestination'] = None
    ) -> 'UploadDestination':
        """
        Create a destination from its wire representation.

        Args:
            data: Dictionary with at least ``url`` (or ``uploadUrl``)
            defaults: Destination whose settings fill in missing keys

        Returns:
            UploadDestination instance
        """
        url = data.get("url") or data.get("uploadUrl")
        if not url:
            raise ValueError("Destination url is required")

        base = defaults or cls(url=url)
        return cls(
            url=url,
            method=UploadMethod(str(data.get("method", base.method.value)).upper()),
            body_encoding=BodyEncoding(data.get("bodyEncoding", base.body_encoding.value)),
            response_format=ResponseFormat(data.get("responseFormat", base.response_format.value)),
            headers=dict(data.get("headers", base.headers)),
            file_field=data.get("fileField", base.file_field),
            metadata_field=data.get("metadataField", base.metadata_field),
        )

    def with_url(self, url: str) -> 'UploadDestination':
        """Return a copy of this destination pointing at another URL."""
        return replace(self, url=url)


@dataclass
class Attachment:
    """Metadata about one uploaded file, keyed by its reference."""

    reference: str
    file_name: str
    content_type: str
    uploaded_by: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    soft_deleted: bool = False

    def __post_init__(self) -> None:
        if not self.reference:
            raise ValueError("Attachment reference cannot be empty")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reference": self.reference,
            "fileName": self.file_name,
            "contentType": self.content_type,
            "uploadedBy": self.uploaded_by,
            "createdAt": self.created_at.isoformat(),
            "softDeleted": self.soft_deleted,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Attachment':
        created_at = data.get("createdAt", data.get("created_at"))
        return cls(
            reference=data["reference"],
            file_name=data.get("fileName", data.get("file_name", "")),
            content_type=data.get("contentType", data.get("content_type", "application/octet-stream")),
            uploaded_by=data.get("uploadedBy", data.get("uploaded_by")),
            created_at=_parse_datetime(created_at) if created_at is not None else utc_now(),
            soft_deleted=bool(data.get("softDeleted", data.get("soft_deleted", False))),
        )


@dataclass(frozen=True)
class SignedUrlGrant:
    """
    A time-bounded, single-use upload destination for one reference.

    Grants are never persisted; they live for the duration of one response.
    """

    reference: str
    destination: UploadDestination
    expires_at: datetime

    @property
    def url(self) -> str:
        return self.destination.url

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utc_now()) >= self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "signedUrl": self.url,
            "reference": self.reference,
            "expiresAt": self.expires_at.isoformat(),
            "method": self.destination.method.value,
            "bodyEncoding": self.destination.body_encoding.value,
            "responseFormat": self.destination.response_format.value,
            "headers": dict(self.destination.headers),
        }
