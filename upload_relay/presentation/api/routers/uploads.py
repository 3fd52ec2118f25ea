"""
Capability upload endpoint for the in-memory object store.

Signed URLs issued by ``InMemoryObjectStore`` point here. The request body
is the raw file; the query string carries the expiry and HMAC signature.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from starlette.concurrency import run_in_threadpool

from ....core.exceptions import SignedUploadRejected
from ....core.interfaces.storage import IObjectStore
from ....infrastructure.storage.object_store import InMemoryObjectStore
from ..dependencies import get_object_store

logger = logging.getLogger(__name__)

router = APIRouter()


@router.put("/uploads/{reference}")
async def signed_upload(
    reference: str,
    request: Request,
    expires: str = Query(...),
    signature: str = Query(...),
    store: IObjectStore = Depends(get_object_store)
) -> Response:
    """Accept the bytes for a signed upload URL, at most once."""
    if not isinstance(store, InMemoryObjectStore):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND,
                            detail="Signed uploads are handled by the object store")

    body = await request.body()
    try:
        await run_in_threadpool(
            store.accept_upload,
            reference,
            expires,
            signature,
            body,
            request.headers.get("content-type")
        )
    except SignedUploadRejected as e:
        logger.warning(f"Rejected signed upload for {reference}: {e}")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))

    return Response(status_code=status.HTTP_200_OK)
