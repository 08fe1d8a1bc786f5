"""Body Encoder - Turns a request payload into bytes and a content type.

Streamed payloads (StreamPayload, FilePayload) are not encoded here; the
Executor copies them to the connection in chunks. See executor.py.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Mapping

from restcall.headers import find_header
from restcall.models import (
    APP_BINARY,
    APP_FORM,
    APP_JSON,
    HDR_CONTENT_TYPE,
    TEXT_PLAIN,
    BytesPayload,
    FormPayload,
    JsonPayload,
    Payload,
    TextPayload,
)
from restcall.uri import query_string


@dataclass(frozen=True)
class EncodedBody:
    """Result of encoding one payload.

    content is None for streamed payloads and for requests without a body.
    content_type is None when the caller already set one or there is no body.
    """

    content: bytes | None = None
    content_type: str | None = None
    streaming: bool = False

    @property
    def has_body(self) -> bool:
        return self.content is not None or self.streaming


def dump_json(data: Any, indent: int) -> str:
    """Serialize a JSON tree. indent -1 means compact single-line output."""
    if indent < 0:
        return json.dumps(data, ensure_ascii=False, separators=(",", ":"))
    return json.dumps(data, ensure_ascii=False, indent=indent)


def encode_body(
    payload: Payload | None,
    headers: Mapping[str, str],
    json_indent: int = -1,
) -> EncodedBody:
    """Encode payload for sending.

    Args:
        payload: The request payload, or None.
        headers: The effective (merged) request headers. A Content-Type set
            here is never overridden.
        json_indent: Indentation for JSON payloads, -1 for compact.

    Returns:
        EncodedBody with the bytes (or streaming flag) and the content type to
        add, if any.
    """
    if payload is None:
        return EncodedBody()

    if isinstance(payload, FormPayload):
        content = query_string(payload.fields).encode("utf-8")
        default_type = APP_FORM
    elif isinstance(payload, JsonPayload):
        content = dump_json(payload.data, json_indent).encode("utf-8")
        default_type = APP_JSON
    elif isinstance(payload, TextPayload):
        content = payload.text.encode("utf-8")
        default_type = f"{TEXT_PLAIN}; charset=utf-8"
    elif isinstance(payload, BytesPayload):
        content = payload.data
        default_type = APP_BINARY
    else:
        # StreamPayload / FilePayload
        content = None
        default_type = APP_BINARY

    content_type = None if find_header(headers, HDR_CONTENT_TYPE) else default_type
    return EncodedBody(
        content=content,
        content_type=content_type,
        streaming=content is None,
    )
