"""
Signed-URL and attachment API endpoints.

All bodies use camelCase field names. Domain errors are translated into
HTTP status codes here: unknown references are 404, re-issued references
409 and object store failures 502.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from starlette.concurrency import run_in_threadpool

from ....core.domain.attachments import Attachment
from ....core.exceptions import DuplicateReference, NotFound, ObjectStoreError
from ....core.interfaces.storage import IAttachmentRegistry, IObjectStore, ISignedUrlBroker
from ..dependencies import get_broker, get_object_store, get_registry

logger = logging.getLogger(__name__)

router = APIRouter()

DEFAULT_CONTENT_TYPE = "application/octet-stream"


class CamelModel(BaseModel):
    """Base model reading and writing camelCase field names."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SignedUrlRequest(CamelModel):
    """Signed upload URL request model."""
    content_type: str = Field(..., min_length=1, description="Content type of the upload")
    file_name: str = Field(..., min_length=1, description="Original file name")
    reference: Optional[str] = Field(None, min_length=1, description="Caller-chosen reference")
    uploaded_by: Optional[str] = Field(None, description="Uploader identity")


class AttachmentBody(CamelModel):
    """Full attachment replacement model."""
    reference: Optional[str] = Field(None, description="Ignored; the path reference is kept")
    file_name: str = Field(..., description="File name")
    content_type: str = Field(..., description="Content type")
    uploaded_by: Optional[str] = Field(None, description="Uploader identity")
    created_at: Optional[datetime] = Field(None, description="Creation timestamp")
    soft_deleted: bool = Field(default=False, description="Soft-delete flag")


def _not_found(e: NotFound) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


def _issue(broker: ISignedUrlBroker, content_type: str, file_name: str,
           reference: Optional[str] = None, uploaded_by: Optional[str] = None):
    try:
        return broker.issue(
            content_type=content_type,
            file_name=file_name,
            reference=reference,
            uploaded_by=uploaded_by
        )
    except DuplicateReference as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except ObjectStoreError as e:
        logger.error(f"Signed URL issuance failed: {e}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))


@router.post("/signed-upload-url")
def create_signed_upload_url(
    request: SignedUrlRequest,
    broker: ISignedUrlBroker = Depends(get_broker)
) -> Dict[str, Any]:
    """Issue a signed upload URL and register a pending attachment."""
    grant, attachment = _issue(
        broker, request.content_type, request.file_name,
        reference=request.reference, uploaded_by=request.uploaded_by
    )
    return {"signedUrl": grant.to_dict(), "attachment": attachment.to_dict()}


@router.get("/signed-upload-url")
def get_signed_upload_url(
    content_type: str = Query(DEFAULT_CONTENT_TYPE, alias="contentType"),
    file_name: str = Query("", alias="fileName"),
    broker: ISignedUrlBroker = Depends(get_broker)
) -> Dict[str, Any]:
    """Issue a signed upload URL (query-string variant)."""
    grant, _ = _issue(broker, content_type, file_name)
    return grant.to_dict()


@router.get("/attachments")
def list_attachments(
    registry: IAttachmentRegistry = Depends(get_registry)
) -> List[Dict[str, Any]]:
    """List every attachment in insertion order."""
    return [attachment.to_dict() for attachment in registry.list()]


@router.post("/attachments", status_code=status.HTTP_201_CREATED)
async def upload_attachment(
    data: UploadFile = File(..., description="File contents"),
    file_name: Optional[str] = Form(None, alias="fileName"),
    broker: ISignedUrlBroker = Depends(get_broker)
) -> Dict[str, Any]:
    """Store a file posted as multipart form data and register it."""
    contents = await data.read()
    name = file_name or data.filename or "upload"
    content_type = data.content_type or DEFAULT_CONTENT_TYPE

    try:
        attachment = await run_in_threadpool(broker.receive, name, content_type, contents)
    except ObjectStoreError as e:
        logger.error(f"Storing posted file {name} failed: {e}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))

    return attachment.to_dict()


@router.put("/attachments/{reference}")
def replace_attachment(
    reference: str,
    body: AttachmentBody,
    registry: IAttachmentRegistry = Depends(get_registry)
) -> Dict[str, Any]:
    """Replace an attachment in full."""
    try:
        current = registry.get(reference)
        attachment = registry.put(reference, Attachment(
            reference=reference,
            file_name=body.file_name,
            content_type=body.content_type,
            uploaded_by=body.uploaded_by,
            created_at=body.created_at or current.created_at,
            soft_deleted=body.soft_deleted,
        ))
    except NotFound as e:
        raise _not_found(e)

    return attachment.to_dict()


@router.get("/attachments/{reference}")
def download_attachment(
    reference: str,
    registry: IAttachmentRegistry = Depends(get_registry),
    store: IObjectStore = Depends(get_object_store)
) -> StreamingResponse:
    """Stream an attachment's bytes as a download."""
    try:
        attachment = registry.get(reference)
        stored = store.get_object(reference)
    except NotFound as e:
        raise _not_found(e)
    except ObjectStoreError as e:
        logger.error(f"Fetching {reference} failed: {e}")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    file_name = attachment.file_name or reference
    headers = {
        "Content-Disposition": f"attachment; filename*=UTF-8''{quote(file_name, safe='')}"
    }
    if stored.content_length is not None:
        headers["Content-Length"] = str(stored.content_length)

    return StreamingResponse(
        stored.chunks,
        media_type=attachment.content_type or stored.content_type,
        headers=headers
    )


@router.delete("/attachments/{reference}")
def delete_attachment(
    reference: str,
    registry: IAttachmentRegistry = Depends(get_registry),
    store: IObjectStore = Depends(get_object_store)
) -> Dict[str, Any]:
    """Remove an attachment and its stored bytes."""
    try:
        attachment = registry.delete(reference)
    except NotFound as e:
        raise _not_found(e)

    try:
        store.delete_object(reference)
    except ObjectStoreError as e:
        logger.warning(f"Stored bytes for {reference} were not removed: {e}")

    return attachment.to_dict()
