"""Error taxonomy for restcall.

Every failure that crosses the Executor boundary is a RestCallError carrying
one ErrorKind. Callers that only care about "did it work" catch RestCallError;
callers that want to decide on retries inspect ``kind`` or catch a subclass.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from restcall.models import ResponseCase


class ErrorKind(str, Enum):
    """Which stage of the pipeline failed."""

    CONFIGURATION = "configuration"  # Caller bug, never worth retrying
    TRANSPORT = "transport"  # DNS, connect, I/O, timeout, TLS
    HTTP_STATUS = "http_status"  # Transport fine, status outside 2xx
    PARSE = "parse"  # Malformed or missing structured body


class RestCallError(Exception):
    """Base class for all restcall errors.

    Attributes:
        kind: The ErrorKind for this failure.
        message: Human-readable description.
        response: The ResponseCase as it stood when the failure happened, if
            the call got far enough to create one. Status and headers may be
            populated even when the body failed to parse.
        cause: The lower-level exception, if any (also set as __cause__).
    """

    kind: ErrorKind = ErrorKind.TRANSPORT

    def __init__(
        self,
        message: str,
        *,
        response: ResponseCase | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.response = response
        self.cause = cause

    @property
    def status_code(self) -> int | None:
        """Status code of the attached response, if one was received."""
        if self.response is None:
            return None
        return self.response.status_code

    def __str__(self) -> str:
        return self.message


class ConfigurationError(RestCallError):
    """Raised for invalid configuration: bad header value, bad payload for method, bad settings."""

    kind = ErrorKind.CONFIGURATION


class TransportError(RestCallError):
    """Raised when the request fails in transit (connection error, timeout, TLS, etc.)."""

    kind = ErrorKind.TRANSPORT


class HttpStatusError(RestCallError):
    """Raised when ensure_success is set and the status code is outside 200-299."""

    kind = ErrorKind.HTTP_STATUS


class ParseError(RestCallError):
    """Raised when a structured response body is malformed or missing.

    Attributes:
        offset: Character offset of the decode failure, when the JSON decoder
            reports one.
    """

    kind = ErrorKind.PARSE

    def __init__(
        self,
        message: str,
        *,
        response: ResponseCase | None = None,
        cause: BaseException | None = None,
        offset: int | None = None,
    ) -> None:
        super().__init__(message, response=response, cause=cause)
        self.offset = offset
