"""
File Content Reader.

Reads a local file (or in-memory bytes) into a base64 data URI. Every read
is independent: no buffer is shared between reads, so concurrent reads for
distinct upload ids cannot interfere.
"""

import logging

import aiofiles

from ....core.domain.sessions import FileHandle
from ....core.exceptions import ReadFailure
from ....core.interfaces.upload import IFileContentReader
from .codec import encode_data_uri

logger = logging.getLogger(__name__)


class FileContentReader(IFileContentReader):
    """Reads file handles into data URIs using aiofiles."""

    def __init__(self, default_content_type: str = "application/octet-stream",
                 max_size: int = 0) -> None:
        """
        Initialize the reader.

        Args:
            default_content_type: Used when no type is declared or guessable
            max_size: Reject files larger than this many bytes (0 = no limit)
        """
        self._default_content_type = default_content_type
        self._max_size = max_size

    async def read(self, upload_id: str, file: FileHandle) -> str:
        """Read a file into a base64 data URI."""
        logger.info(f"Read base64 contents started ({upload_id})")

        if file.content is not None:
            data = bytes(file.content)
        elif file.path:
            try:
                async with aiofiles.open(file.path, 'rb') as f:
                    data = await f.read()
            except OSError as e:
                logger.error(f"Read base64 contents failed ({upload_id}): {e}")
                raise ReadFailure(upload_id, f"Cannot read {file.name}: {e.strerror or e}") from e
        else:
            raise ReadFailure(upload_id, f"File {file.name} has neither a path nor content")

        if self._max_size and len(data) > self._max_size:
            raise ReadFailure(
                upload_id, f"File {file.name} is {len(data)} bytes, limit is {self._max_size}")

        encoded = encode_data_uri(data, file.guess_content_type(self._default_content_type))

        logger.info(f"Read base64 contents success ({upload_id})")
        return encoded
