"""Response Parser - Interprets response bytes according to the requested shape."""

from __future__ import annotations

import codecs
import json
import re
from typing import Any

from restcall.errors import ParseError
from restcall.models import ResultShape

_CHARSET_PATTERN = re.compile(r';\s*charset\s*=\s*"?([^";\s]+)"?', re.IGNORECASE)

HTTP_NO_CONTENT = 204


def charset_from_content_type(content_type: str | None) -> str | None:
    """Extract a known charset from a Content-Type value, or None."""
    if not content_type:
        return None
    match = _CHARSET_PATTERN.search(content_type)
    if not match:
        return None
    charset = match.group(1)
    try:
        codecs.lookup(charset)
    except LookupError:
        return None
    return charset


def decode_text(content: bytes, content_type: str | None) -> str:
    """Decode bytes using the Content-Type charset, falling back to UTF-8."""
    charset = charset_from_content_type(content_type) or "utf-8"
    return content.decode(charset, errors="replace")


def parse_body(
    shape: ResultShape,
    content: bytes,
    *,
    status_code: int | None = None,
    content_type: str | None = None,
) -> Any:
    """Parse raw response bytes into the requested shape.

    Args:
        shape: Requested result shape.
        content: Raw response body.
        status_code: Response status; 204 allows an empty structured body.
        content_type: Response Content-Type, used for the text charset.

    Returns:
        None for ResultShape.NONE, bytes, str, dict or list.

    Raises:
        ParseError: If a JSON shape is requested and the body is empty
            (unless 204), not valid in its charset, malformed, or of the
            wrong top-level type. offset is a byte offset into content.
    """
    if shape is ResultShape.NONE:
        return None
    if shape is ResultShape.BYTES:
        return content
    if shape is ResultShape.TEXT:
        return decode_text(content, content_type)

    if not content or not content.strip():
        if status_code == HTTP_NO_CONTENT:
            return None
        raise ParseError("no content to parse")

    # Strict decoding: malformed bytes are a parse failure, not replacement characters
    charset = charset_from_content_type(content_type) or "utf-8"
    try:
        text = content.decode(charset)
    except UnicodeDecodeError as e:
        raise ParseError(
            f"Invalid {charset} in JSON body at offset {e.start}: {e.reason}",
            cause=e,
            offset=e.start,
        ) from e

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        # Decoder positions count characters; report bytes
        offset = len(text[:e.pos].encode(charset))
        raise ParseError(
            f"Invalid JSON at offset {offset}: {e.msg}", cause=e, offset=offset
        ) from e

    if shape is ResultShape.JSON_OBJECT and not isinstance(data, dict):
        raise ParseError(f"Expected JSON object, got {type(data).__name__}")
    if shape is ResultShape.JSON_ARRAY and not isinstance(data, list):
        raise ParseError(f"Expected JSON array, got {type(data).__name__}")
    return data
