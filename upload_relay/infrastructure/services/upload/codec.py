"""
Data URI encoding and decoding.

Files are carried between the reader and the transport as base64 data URIs
(``data:<content-type>;base64,<payload>``).
"""

import base64
import binascii
from dataclasses import dataclass, field
from urllib.parse import unquote_to_bytes

from ....core.exceptions import DecodeFailure

DEFAULT_DATA_URI_TYPE = "text/plain;charset=US-ASCII"


@dataclass(frozen=True)
class DecodedPayload:
    """Bytes recovered from a data URI, with their declared content type."""
    content_type: str
    data: bytes = field(repr=False)


def encode_data_uri(data: bytes, content_type: str = "application/octet-stream") -> str:
    """Encode bytes as a base64 data URI."""
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{content_type};base64,{encoded}"


def decode_data_uri(uri: str) -> DecodedPayload:
    """
    Decode a data URI back into bytes.

    Args:
        uri: ``data:`` URI, base64 or percent-encoded

    Returns:
        Decoded payload

    Raises:
        DecodeFailure: If the URI is not a well-formed data URI
    """
    if not isinstance(uri, str) or not uri.startswith("data:"):
        raise DecodeFailure("Encoded payload is not a data URI")

    header, separator, payload = uri[len("data:"):].partition(",")
    if not separator:
        raise DecodeFailure("Encoded payload has no data section")

    params = header.split(";")
    is_base64 = params[-1].strip().lower() == "base64"
    if is_base64:
        params = params[:-1]

    content_type = ";".join(p for p in params if p) or DEFAULT_DATA_URI_TYPE

    if not is_base64:
        return DecodedPayload(content_type=content_type, data=unquote_to_bytes(payload))

    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeFailure(f"Encoded payload is not valid base64: {e}") from e

    return DecodedPayload(content_type=content_type, data=data)
