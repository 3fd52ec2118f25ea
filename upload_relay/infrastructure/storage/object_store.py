"""
Object store backends.

``S3ObjectStore`` keeps attachment bytes in an S3 bucket and hands out
presigned PUT URLs. ``InMemoryObjectStore`` keeps bytes in process memory and
issues HMAC-signed capability URLs served by this application's own
``PUT /uploads/{reference}`` endpoint.
"""

import hashlib
import hmac
import logging
import secrets
import threading
import time
from typing import Callable, Dict, Iterator, Optional, Tuple
from urllib.parse import quote, urlencode

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from ...core.domain.attachments import (
    BodyEncoding, ResponseFormat, UploadDestination, UploadMethod
)
from ...core.exceptions import (
    NotFound, ObjectStoreError, SignedUploadRejected, StoreUnavailable
)
from ...core.interfaces.storage import IObjectStore, StoredObject
from ..config.models import StorageConfig

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024

_MISSING_KEY_CODES = frozenset({"NoSuchKey", "404", "NotFound"})


def _put_destination(url: str, content_type: str) -> UploadDestination:
    # The content type is part of the signature, so the client must send it back
    return UploadDestination(
        url=url,
        method=UploadMethod.PUT,
        body_encoding=BodyEncoding.RAW,
        response_format=ResponseFormat.NONE,
        headers={"Content-Type": content_type},
    )


class S3ObjectStore(IObjectStore):
    """Object store backed by an S3 bucket."""

    def __init__(
        self,
        bucket: str,
        client: Optional[object] = None,
        region: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE
    ) -> None:
        """
        Initialize the store.

        Args:
            bucket: Bucket holding one object per attachment reference
            client: Preconfigured boto3 S3 client (credentials are then not required)
            region: AWS region
            endpoint_url: Custom endpoint (MinIO, localstack, ...)
            access_key_id: Access key id
            secret_access_key: Secret access key
            chunk_size: Chunk size used when streaming objects out

        Raises:
            StoreUnavailable: If no client is given and credentials are missing
        """
        if client is None:
            if not access_key_id or not secret_access_key:
                raise StoreUnavailable(
                    "S3 credentials are not configured (access key id and secret access key)")

            client = boto3.client(
                "s3",
                region_name=region,
                endpoint_url=endpoint_url,
                aws_access_key_id=access_key_id,
                aws_secret_access_key=secret_access_key,
                config=Config(signature_version="s3v4"),
            )

        self._client = client
        self._bucket = bucket
        self._chunk_size = chunk_size

    @property
    def bucket(self) -> str:
        return self._bucket

    def presign_upload(self, reference: str, content_type: str,
                       expires_in: int) -> UploadDestination:
        try:
            url = self._client.generate_presigned_url(
                "put_object",
                Params={"Bucket": self._bucket, "Key": reference, "ContentType": content_type},
                ExpiresIn=expires_in,
            )
        except (BotoCoreError, ClientError) as e:
            raise ObjectStoreError(f"Cannot presign upload for {reference}: {e}") from e

        logger.debug(f"Presigned upload URL for {reference} (expires in {expires_in}s)")
        return _put_destination(url, content_type)

    def put_object(self, reference: str, data: bytes, content_type: str) -> None:
        try:
            self._client.put_object(
                Bucket=self._bucket, Key=reference, Body=data, ContentType=content_type)
        except (BotoCoreError, ClientError) as e:
            raise ObjectStoreError(f"Cannot store {reference}: {e}") from e

    def get_object(self, reference: str) -> StoredObject:
        try:
            response = self._client.get_object(Bucket=self._bucket, Key=reference)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code in _MISSING_KEY_CODES:
                raise NotFound(reference) from e
            raise ObjectStoreError(f"Cannot fetch {reference}: {e}") from e
        except BotoCoreError as e:
            raise ObjectStoreError(f"Cannot fetch {reference}: {e}") from e

        return StoredObject(
            reference=reference,
            content_type=response.get("ContentType") or "application/octet-stream",
            chunks=response["Body"].iter_chunks(self._chunk_size),
            content_length=response.get("ContentLength"),
        )

    def delete_object(self, reference: str) -> None:
        try:
            self._client.delete_object(Bucket=self._bucket, Key=reference)
        except (BotoCoreError, ClientError) as e:
            raise ObjectStoreError(f"Cannot delete {reference}: {e}") from e


class InMemoryObjectStore(IObjectStore):
    """
    Object store kept in process memory.

    Upload URLs are signed with HMAC-SHA256 over the reference, content type
    and expiry. Each one is accepted at most once and only until it expires.
    """

    def __init__(
        self,
        base_url: str,
        signing_secret: Optional[str] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        clock: Callable[[], float] = time.time
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._secret = (signing_secret or secrets.token_hex(32)).encode("utf-8")
        self._chunk_size = chunk_size
        self._clock = clock

        self._objects: Dict[str, Tuple[bytes, str]] = {}
        # reference -> (content type, expiry timestamp)
        self._pending: Dict[str, Tuple[str, int]] = {}
        self._lock = threading.RLock()

    def _sign(self, reference: str, content_type: str, expires: int) -> str:
        message = f"PUT\n{reference}\n{content_type}\n{expires}".encode("utf-8")
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    def presign_upload(self, reference: str, content_type: str,
                       expires_in: int) -> UploadDestination:
        expires = int(self._clock()) + expires_in
        query = urlencode({
            "expires": expires,
            "signature": self._sign(reference, content_type, expires),
        })
        url = f"{self._base_url}/uploads/{quote(reference, safe='')}?{query}"

        with self._lock:
            now = self._clock()
            for stale in [ref for ref, (_, at) in self._pending.items() if at < now]:
                del self._pending[stale]
            self._pending[reference] = (content_type, expires)

        return _put_destination(url, content_type)

    def accept_upload(
        self,
        reference: str,
        expires: str,
        signature: str,
        data: bytes,
        content_type: Optional[str] = None
    ) -> str:
        """
        Store bytes sent to a signed upload URL.

        Returns:
            The content type the URL was signed for

        Raises:
            SignedUploadRejected: If the signature is wrong, the URL expired,
                the content type differs or the URL was already used
        """
        try:
            expires_at = int(expires)
        except (TypeError, ValueError):
            raise SignedUploadRejected("Invalid expiry")

        with self._lock:
            pending = self._pending.get(reference)
            if pending is None:
                raise SignedUploadRejected(f"No pending upload for {reference}")

            signed_type, pending_expiry = pending
            expected = self._sign(reference, signed_type, expires_at)
            if expires_at != pending_expiry or not hmac.compare_digest(expected, signature or ""):
                raise SignedUploadRejected("Signature does not match")

            if self._clock() > expires_at:
                del self._pending[reference]
                raise SignedUploadRejected(f"Upload URL for {reference} has expired")

            if content_type and content_type.split(";")[0].strip() != signed_type.split(";")[0].strip():
                raise SignedUploadRejected(
                    f"Content type {content_type} does not match signed type {signed_type}")

            del self._pending[reference]
            self._objects[reference] = (bytes(data), signed_type)

        logger.info(f"Accepted signed upload for {reference} ({len(data)} bytes)")
        return signed_type

    def put_object(self, reference: str, data: bytes, content_type: str) -> None:
        with self._lock:
            self._objects[reference] = (bytes(data), content_type)

    def _iter_chunks(self, data: bytes) -> Iterator[bytes]:
        for offset in range(0, len(data), self._chunk_size):
            yield data[offset:offset + self._chunk_size]

    def get_object(self, reference: str) -> StoredObject:
        with self._lock:
            stored = self._objects.get(reference)
        if stored is None:
            raise NotFound(reference, f"No object stored for {reference}")

        data, content_type = stored
        return StoredObject(
            reference=reference,
            content_type=content_type,
            chunks=self._iter_chunks(data),
            content_length=len(data),
        )

    def delete_object(self, reference: str) -> None:
        with self._lock:
            self._objects.pop(reference, None)
            self._pending.pop(reference, None)


def build_object_store(config: StorageConfig, base_url: str) -> IObjectStore:
    """
    Create the object store selected by the storage configuration.

    Raises:
        StoreUnavailable: If the S3 backend is selected without credentials
    """
    if config.backend == "memory":
        return InMemoryObjectStore(base_url=base_url, signing_secret=config.signing_secret)

    if config.backend == "s3":
        return S3ObjectStore(
            bucket=config.bucket,
            region=config.region,
            endpoint_url=config.endpoint_url,
            access_key_id=config.access_key_id,
            secret_access_key=config.secret_access_key,
        )

    raise StoreUnavailable(f"Unknown storage backend: {config.backend}")
