"""Executor - Runs one request end to end and captures the response.

Each call is synchronous and makes exactly one attempt. Every resource the
call opens (HTTP client, file, request stream, response) is registered on an
ExitStack and released on every exit path; failures while releasing are
logged and suppressed so they never hide the original error.
"""

from __future__ import annotations

import logging
import ssl
import time
from contextlib import ExitStack
from pathlib import Path
from typing import TYPE_CHECKING, Any, BinaryIO, Iterator

import httpx

from restcall.body import encode_body
from restcall.config_loader import first_present
from restcall.errors import ConfigurationError, RestCallError, TransportError
from restcall.headers import ensure_header, http_date, merge_headers
from restcall.models import (
    APP_JSON,
    DEFAULT_USER_AGENT,
    HDR_ACCEPT,
    HDR_CONTENT_TYPE,
    HDR_IF_MODIFIED_SINCE,
    HDR_USER_AGENT,
    FilePayload,
    RequestCase,
    ResponseCase,
    ResultShape,
    TLSConfig,
)
from restcall.parser import parse_body
from restcall.uri import append_query

if TYPE_CHECKING:
    from restcall.client import Client

logger = logging.getLogger(__name__)

CHUNK_SIZE = 8192

# Request extension carrying the cache-use flag to the transport
USE_CACHES_EXTENSION = "restcall.use_caches"


def _open_payload_file(path: Path) -> BinaryIO:
    """Open a file payload for reading."""
    return open(path, "rb")


def _iter_chunks(source: BinaryIO, chunk_size: int = CHUNK_SIZE) -> Iterator[bytes]:
    """Yield fixed-size chunks from source until it is exhausted."""
    while True:
        chunk = source.read(chunk_size)
        if not chunk:
            return
        yield chunk


def _close_quietly(resource: Any, label: str) -> None:
    """Close a resource, logging and suppressing any failure."""
    try:
        resource.close()
    except Exception as e:
        logger.debug("Ignoring error while closing %s: %s", label, e)


def _collect_headers(response: httpx.Response) -> dict[str, list[str]]:
    """Lowercase keys, list values (repeated headers keep every value)."""
    headers: dict[str, list[str]] = {}
    for key, value in response.headers.multi_items():
        headers.setdefault(key.lower(), []).append(value)
    return headers


class Executor:
    """Executes RequestCases on behalf of one Client.

    Client configuration (settings, default headers, redirects, TLS,
    transport) is read at call time, so changes made between calls apply to
    the next call.

    Usage:
        executor = Executor(client)
        response = executor.execute(request_case, ResultShape.JSON_OBJECT)
    """

    def __init__(self, client: Client) -> None:
        self._client = client

    def execute(
        self,
        request: RequestCase,
        shape: ResultShape = ResultShape.NONE,
    ) -> ResponseCase:
        """Execute a request and parse the response body into ``shape``.

        Args:
            request: The request to execute.
            shape: Requested result shape for the body.

        Returns:
            The populated ResponseCase.

        Raises:
            ConfigurationError: Invalid header value or TLS configuration.
            TransportError: Connection, timeout, TLS or other I/O failure.
            HttpStatusError: ensure_success is set and the status is not 2xx.
            ParseError: The body does not fit the requested JSON shape.
        """
        response = ResponseCase(request=request)
        start_time = time.perf_counter()

        try:
            with ExitStack() as stack:
                self._execute_into(request, shape, response, stack)
        except RestCallError as e:
            if e.response is None:
                e.response = response
            raise
        except httpx.TimeoutException as e:
            logger.debug("%s %s timed out: %s", request.method.value, request.uri, e)
            raise TransportError(f"request timeout: {e}", response=response, cause=e) from e
        except httpx.ConnectError as e:
            logger.debug("%s %s connection failed: %s", request.method.value, request.uri, e)
            raise TransportError(f"connection error: {e}", response=response, cause=e) from e
        except httpx.InvalidURL as e:
            raise TransportError(f"invalid URL '{request.uri}': {e}", response=response, cause=e) from e
        except (httpx.HTTPError, OSError) as e:
            logger.debug("%s %s failed: %s", request.method.value, request.uri, e)
            raise TransportError(f"request error: {e}", response=response, cause=e) from e
        except UnicodeEncodeError as e:
            raise TransportError(
                f"encoding error: non-ASCII characters in request "
                f"(header, query param, or path). Character: {e.object[e.start:e.end]!r} "
                f"at position {e.start}. HTTP requires ASCII for these fields.",
                response=response,
                cause=e,
            ) from e
        except Exception as e:
            raise TransportError(f"unexpected error: {e!r}", response=response, cause=e) from e

        response.elapsed_ms = (time.perf_counter() - start_time) * 1000
        logger.debug(
            "%s %s -> %s (%.1f ms)",
            request.method.value,
            request.uri,
            response.status_code,
            response.elapsed_ms,
        )
        return response

    def _execute_into(
        self,
        request: RequestCase,
        shape: ResultShape,
        response: ResponseCase,
        stack: ExitStack,
    ) -> None:
        client = self._client
        settings = client.settings

        uri = append_query(request.uri, request.method, request.params)
        url = httpx.URL(uri)
        logger.debug("%s %s", request.method.value, url)

        timeout = httpx.Timeout(
            first_present(request.read_timeout, settings.read_timeout),
            connect=first_present(request.connect_timeout, settings.connect_timeout),
        )
        verify: ssl.SSLContext | bool = True
        if url.scheme == "https" and client.tls.is_customized:
            verify = self._build_ssl_context(client.tls, url.host)

        http_client = httpx.Client(
            verify=verify,
            timeout=timeout,
            follow_redirects=client.follow_redirects,
            transport=client.transport,
        )
        # An injected transport belongs to the caller; closing the client would close it
        if client.transport is None:
            stack.callback(_close_quietly, http_client, "HTTP client")

        headers = merge_headers(settings.headers, client.default_headers, request.headers)
        ensure_header(headers, HDR_USER_AGENT, DEFAULT_USER_AGENT)
        if shape.is_json:
            ensure_header(headers, HDR_ACCEPT, APP_JSON)
        if request.if_modified_since is not None:
            ensure_header(headers, HDR_IF_MODIFIED_SINCE, http_date(request.if_modified_since))

        content: bytes | Iterator[bytes] | None = None
        if request.method.allows_body:
            encoded = encode_body(request.payload, headers, settings.json_indent)
            if encoded.content_type:
                headers[HDR_CONTENT_TYPE] = encoded.content_type
            if encoded.streaming:
                content = self._open_stream(request, stack)
            else:
                content = encoded.content

        http_request = http_client.build_request(
            request.method.value,
            url,
            headers=headers,
            content=content,
            extensions={USE_CACHES_EXTENSION: request.use_caches},
        )
        http_response = http_client.send(http_request)
        stack.callback(_close_quietly, http_response, "response")

        response.content = http_response.content
        response.status_code = http_response.status_code
        response.status_message = http_response.reason_phrase
        response.headers = _collect_headers(http_response)

        if request.ensure_success:
            response.ensure_success()

        response.body = parse_body(
            shape,
            response.content,
            status_code=response.status_code,
            content_type=response.content_type,
        )

    def _open_stream(self, request: RequestCase, stack: ExitStack) -> Iterator[bytes]:
        """Open the streamed payload source and return a chunk iterator.

        Files are opened here, at execution time, and closed by the stack.
        Caller-supplied streams are read but left open.
        """
        payload = request.payload
        if isinstance(payload, FilePayload):
            source = _open_payload_file(payload.path)
            stack.callback(_close_quietly, source, f"file {payload.path}")
        else:
            source = payload.stream

        chunks = _iter_chunks(source)
        stack.callback(_close_quietly, chunks, "request stream")
        return chunks

    @staticmethod
    def _build_ssl_context(tls: TLSConfig, host: str) -> ssl.SSLContext:
        """Build the SSL context for a secure connection from TLS overrides.

        A custom ssl_context is used as is. Otherwise a default context is
        created and ca_bundle, verify_ssl and the client certificate are
        applied to it. The hostname verifier runs before any I/O: rejecting
        the host fails the call, accepting it turns off the TLS library's
        own hostname check (on the custom context too, if one was given).
        """
        if tls.hostname_verifier is not None and not tls.hostname_verifier(host):
            raise TransportError(f"Hostname '{host}' rejected by hostname verifier")

        if tls.ssl_context is not None:
            context = tls.ssl_context
        else:
            try:
                context = ssl.create_default_context(cafile=tls.ca_bundle)
                if tls.cert:
                    context.load_cert_chain(tls.cert, tls.key, tls.key_password)
            except (OSError, ssl.SSLError) as e:
                raise ConfigurationError(f"Invalid TLS configuration: {e}", cause=e) from e
            if not tls.verify_ssl:
                context.check_hostname = False
                context.verify_mode = ssl.CERT_NONE

        if tls.hostname_verifier is not None:
            context.check_hostname = False
        return context
