"""Internal data models for restcall.

All models use Pydantic v2. The request side is immutable once built
(RequestCase is frozen); the response side (ResponseCase) is filled in
incrementally by the Executor and attached to errors when a call fails.
"""

from __future__ import annotations

import ssl
from datetime import datetime
from email.utils import parsedate_to_datetime
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Callable, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from restcall.errors import HttpStatusError
from restcall.headers import set_header_value

# =============================================================================
# HTTP Constants
# =============================================================================

DEFAULT_USER_AGENT = "restcall/0.1"
APP_FORM = "application/x-www-form-urlencoded"
APP_JSON = "application/json"
APP_BINARY = "application/octet-stream"
TEXT_PLAIN = "text/plain"

HDR_CONTENT_TYPE = "Content-Type"
HDR_ACCEPT = "Accept"
HDR_USER_AGENT = "User-Agent"
HDR_AUTHORIZATION = "Authorization"
HDR_IF_MODIFIED_SINCE = "If-Modified-Since"

DEFAULT_CONNECT_TIMEOUT = 10.0
DEFAULT_READ_TIMEOUT = 60.0
DEFAULT_JSON_INDENT = -1


class Method(str, Enum):
    """HTTP methods supported by the client."""

    GET = "GET"  # retrieval
    POST = "POST"  # creation
    PUT = "PUT"  # replacement
    DELETE = "DELETE"  # removal

    @property
    def allows_body(self) -> bool:
        return self in (Method.POST, Method.PUT)


class ResultShape(str, Enum):
    """Target type for the parsed response body."""

    NONE = "none"
    BYTES = "bytes"
    TEXT = "text"
    JSON_OBJECT = "json_object"
    JSON_ARRAY = "json_array"

    @property
    def is_json(self) -> bool:
        return self in (ResultShape.JSON_OBJECT, ResultShape.JSON_ARRAY)


# =============================================================================
# Payload Variants
# =============================================================================


class FormPayload(BaseModel):
    """Key-value map sent as application/x-www-form-urlencoded."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["form"] = "form"
    fields: dict[str, Any] = Field(description="Form fields (list values repeat the key)")


class JsonPayload(BaseModel):
    """JSON object or array tree."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["json"] = "json"
    data: dict[str, Any] | list[Any] = Field(description="JSON tree to serialize")


class TextPayload(BaseModel):
    """Plain string, sent UTF-8 encoded."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["text"] = "text"
    text: str


class BytesPayload(BaseModel):
    """Raw byte buffer, passed through unchanged."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["bytes"] = "bytes"
    data: bytes


class StreamPayload(BaseModel):
    """Readable binary stream copied to the connection chunk by chunk.

    The caller owns the stream; the executor reads it but never closes it.
    """

    model_config = ConfigDict(extra="forbid", frozen=True, arbitrary_types_allowed=True)

    kind: Literal["stream"] = "stream"
    stream: Any = Field(description="Object with a read(size) method returning bytes")

    @field_validator("stream")
    @classmethod
    def check_readable(cls, v: Any) -> Any:
        if not callable(getattr(v, "read", None)):
            raise ValueError("stream must have a read() method")
        return v


class FilePayload(BaseModel):
    """File copied to the connection chunk by chunk.

    The file is opened read-only when the request executes (not when the
    payload is created) and always closed afterwards.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["file"] = "file"
    path: Path


Payload = Annotated[
    Union[FormPayload, JsonPayload, TextPayload, BytesPayload, StreamPayload, FilePayload],
    Field(discriminator="kind"),
]

STREAMING_KINDS = frozenset({"stream", "file"})


# =============================================================================
# Core HTTP Models
# =============================================================================


class RequestCase(BaseModel):
    """One HTTP call, frozen once the builder hands it to the Executor.

    Headers set here take precedence over client and process-wide headers.
    Query params are only appended for GET requests.
    """

    model_config = ConfigDict(extra="forbid", frozen=True, arbitrary_types_allowed=True)

    method: Method = Field(description="HTTP method")
    uri: str = Field(description="Base URI + path, without the GET query string")
    headers: dict[str, Any] = Field(
        default_factory=dict, description="Per-request headers (highest precedence)"
    )
    params: list[tuple[str, Any]] = Field(
        default_factory=list, description="Query parameters in insertion order"
    )
    payload: Payload | None = Field(default=None, description="Request body, if any")
    connect_timeout: float | None = Field(default=None, gt=0, description="Seconds")
    read_timeout: float | None = Field(default=None, gt=0, description="Seconds")
    if_modified_since: datetime | int | None = Field(
        default=None, description="datetime or epoch milliseconds"
    )
    use_caches: bool = Field(default=False, description="Passed through to the transport")
    ensure_success: bool = Field(default=False, description="Fail on status outside 2xx")

    @property
    def streaming(self) -> bool:
        """True when the payload is copied from a stream or file instead of buffered."""
        return self.payload is not None and self.payload.kind in STREAMING_KINDS


class ResponseCase(BaseModel):
    """Response of one call, populated step by step by the Executor.

    Header keys are lowercase. Header values are lists for repeated headers.
    """

    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True)

    request: RequestCase = Field(description="The request that produced this response")
    status_code: int | None = Field(default=None, description="HTTP status code")
    status_message: str | None = Field(default=None, description="Reason phrase")
    headers: dict[str, list[str]] = Field(
        default_factory=dict, description="Response headers (lowercase keys, list values)"
    )
    content: bytes | None = Field(default=None, description="Raw response body as read")
    body: Any = Field(default=None, description="Body parsed into the requested shape")
    elapsed_ms: float | None = Field(default=None, description="Response time in milliseconds")

    @property
    def is_success(self) -> bool:
        return self.status_code is not None and 200 <= self.status_code <= 299

    @property
    def status_line(self) -> str:
        """E.g. ``HTTP 404 Not Found``."""
        parts = ["HTTP", str(self.status_code)]
        if self.status_message:
            parts.append(self.status_message)
        return " ".join(parts)

    def header(self, name: str, default: str | None = None) -> str | None:
        """First value of a header (case-insensitive), or default."""
        values = self.headers.get(name.lower())
        if not values:
            return default
        return values[0]

    @property
    def content_type(self) -> str | None:
        return self.header("content-type")

    @property
    def date(self) -> datetime | None:
        return self._date_header("date")

    @property
    def expiration(self) -> datetime | None:
        return self._date_header("expires")

    @property
    def last_modified(self) -> datetime | None:
        return self._date_header("last-modified")

    def _date_header(self, name: str) -> datetime | None:
        value = self.header(name)
        if not value:
            return None
        try:
            return parsedate_to_datetime(value)
        except (TypeError, ValueError):
            # Expires: 0 and similar are legal and mean "already expired"
            return None

    def ensure_success(self) -> None:
        """Raise HttpStatusError if the status code is outside 200-299."""
        if not self.is_success:
            raise HttpStatusError(
                f"{self.status_line} for {self.request.method.value} {self.request.uri}",
                response=self,
            )


# =============================================================================
# Configuration Models
# =============================================================================


class Settings(BaseModel):
    """Process-wide configuration shared by every Client that uses it.

    Mutations are visible to all clients at their next call. There is no
    locking: a call running concurrently with a mutation may see a mix of
    old and new values.
    """

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    headers: dict[str, Any] = Field(default_factory=dict, description="Process-wide headers")
    base_uri: str | None = Field(default=None, description="Prefix for all request URIs")
    connect_timeout: float = Field(default=DEFAULT_CONNECT_TIMEOUT, gt=0, description="Seconds")
    read_timeout: float = Field(default=DEFAULT_READ_TIMEOUT, gt=0, description="Seconds")
    json_indent: int = Field(
        default=DEFAULT_JSON_INDENT, ge=-1, description="JSON indentation, -1 for compact"
    )

    def set_header(self, name: str, value: Any) -> None:
        """Set a process-wide header. None removes it (name matched in any case)."""
        set_header_value(self.headers, name, value)


class TLSConfig(BaseModel):
    """TLS overrides for one Client. Only applied to https URIs."""

    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True)

    ssl_context: ssl.SSLContext | None = Field(
        default=None, description="Custom trust policy (takes precedence over ca_bundle)"
    )
    ca_bundle: str | None = Field(default=None, description="Path to PEM trust roots")
    verify_ssl: bool = Field(default=True, description="False disables certificate checks")
    cert: str | None = Field(default=None, description="Client certificate (mTLS)")
    key: str | None = Field(default=None, description="Client private key (mTLS)")
    key_password: str | None = Field(default=None, description="Password for the private key")
    hostname_verifier: Callable[[str], bool] | None = Field(
        default=None,
        description=(
            "Returns True to accept a hostname. Consulted before connecting and "
            "replaces the built-in hostname check: False rejects the host even "
            "when its certificate matches"
        ),
    )

    @property
    def is_customized(self) -> bool:
        return (
            self.ssl_context is not None
            or self.ca_bundle is not None
            or not self.verify_ssl
            or self.cert is not None
            or self.hostname_verifier is not None
        )


class ClientConfigFile(BaseModel):
    """Top-level YAML configuration file structure.

    Timeouts and json_indent left unset fall back to built-in defaults.
    """

    model_config = ConfigDict(extra="forbid")

    base_uri: str | None = Field(default=None, description="Prefix for all request URIs")
    headers: dict[str, str | int | float | bool] = Field(
        default_factory=dict, description="Headers (supports ${ENV_VAR} substitution)"
    )
    connect_timeout: float | None = Field(default=None, gt=0, description="Seconds")
    read_timeout: float | None = Field(default=None, gt=0, description="Seconds")
    json_indent: int | None = Field(default=None, ge=-1, description="-1 for compact")
    follow_redirects: bool = Field(default=False, description="Follow 3xx automatically")
    tls: TLSConfig | None = Field(default=None, description="TLS settings")
