"""Client and request builder - The caller-facing surface of restcall.

A Client holds instance configuration (base URI, default headers, redirect
policy, TLS overrides, injected transport) on top of the shared Settings.
``client.get(path)`` and friends return a RequestBuilder; one of its
terminal methods (``as_json_object()``, ``as_text()``, ...) freezes the
request into a RequestCase and executes it.

A Client is meant to be configured from one thread. Do not change its
configuration while calls made through it are in flight.
"""

from __future__ import annotations

import base64
from datetime import datetime
from pathlib import Path
from typing import Any, Mapping

import httpx
from pydantic import ValidationError

from restcall.config_loader import get_settings, load_client_config, settings_from_config
from restcall.errors import ConfigurationError
from restcall.executor import Executor
from restcall.headers import set_header_value
from restcall.models import (
    BytesPayload,
    FilePayload,
    FormPayload,
    JsonPayload,
    Method,
    Payload,
    RequestCase,
    ResponseCase,
    ResultShape,
    Settings,
    StreamPayload,
    TextPayload,
    TLSConfig,
)
from restcall.uri import compose_uri, resolve_base_uri


def basic_auth(user: str, password: str) -> str:
    """Build an ``Authorization`` header value for HTTP Basic authentication."""
    token = base64.b64encode(f"{user}:{password}".encode("utf-8")).decode("ascii")
    return f"Basic {token}"


class Client:
    """Issues requests to JSON REST services.

    Usage:
        client = Client(base_uri="https://api.example.com")
        client.set_default_header("Authorization", "Bearer abc")
        user = client.get("/users/42").ensure_success().as_json_object().body
    """

    def __init__(
        self,
        *,
        base_uri: str | None = None,
        headers: Mapping[str, Any] | None = None,
        follow_redirects: bool = False,
        tls: TLSConfig | None = None,
        transport: httpx.BaseTransport | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_uri: Prefix for request URIs. Takes precedence over the
                process-wide base URI; None falls through to it.
            headers: Default headers for every request from this client.
            follow_redirects: Follow 3xx responses automatically. Off by
                default; callers are expected to handle redirects.
            tls: TLS overrides, applied to https URIs only.
            transport: httpx transport to use instead of the network (tests,
                proxies). Owned by the caller; never closed by the client.
            settings: Settings to use instead of the process-wide ones.
        """
        self.base_uri = base_uri
        self.default_headers: dict[str, Any] = {}
        for name, value in (headers or {}).items():
            self.set_default_header(name, value)
        self.follow_redirects = follow_redirects
        self.tls = tls or TLSConfig()
        self.transport = transport
        self._settings = settings
        self._executor = Executor(self)

    @classmethod
    def from_config(
        cls,
        config_path: Path | str,
        *,
        transport: httpx.BaseTransport | None = None,
    ) -> Client:
        """Create a client from a YAML configuration file.

        The file's timeouts and json_indent go into a private Settings, so
        they do not leak into the process-wide configuration.
        """
        config = load_client_config(Path(config_path))
        settings = settings_from_config(config)
        # Base URI and headers are instance-scoped here
        settings.base_uri = None
        settings.headers = {}
        return cls(
            base_uri=config.base_uri,
            headers=config.headers,
            follow_redirects=config.follow_redirects,
            tls=config.tls,
            transport=transport,
            settings=settings,
        )

    @property
    def settings(self) -> Settings:
        """The Settings in effect: the client's own, or the process-wide ones."""
        if self._settings is not None:
            return self._settings
        return get_settings()

    def set_default_header(self, name: str, value: Any) -> None:
        """Set a header for every request from this client.

        None removes it, letting a process-wide value shine through. The name
        is matched in any case.
        """
        set_header_value(self.default_headers, name, value)

    def request(self, method: Method | str, path_or_uri: str) -> RequestBuilder:
        """Start building a request.

        path_or_uri is appended to the base URI as is, without any check.
        """
        try:
            method = Method(method.upper() if isinstance(method, str) else method)
        except ValueError as e:
            raise ConfigurationError(f"Unsupported HTTP method: {method}", cause=e) from e
        base_uri = resolve_base_uri(self.base_uri, self.settings.base_uri)
        return RequestBuilder(self, method, compose_uri(base_uri, path_or_uri))

    def get(self, path_or_uri: str) -> RequestBuilder:
        return self.request(Method.GET, path_or_uri)

    def post(self, path_or_uri: str) -> RequestBuilder:
        return self.request(Method.POST, path_or_uri)

    def put(self, path_or_uri: str) -> RequestBuilder:
        return self.request(Method.PUT, path_or_uri)

    def delete(self, path_or_uri: str) -> RequestBuilder:
        return self.request(Method.DELETE, path_or_uri)

    def execute(self, request: RequestCase, shape: ResultShape = ResultShape.NONE) -> ResponseCase:
        """Execute an already built request."""
        return self._executor.execute(request, shape)


class RequestBuilder:
    """Collects the parts of one request, then executes it.

    Builder methods return self so calls can be chained. A builder is not
    thread-safe; use one per call.
    """

    def __init__(self, client: Client, method: Method, uri: str) -> None:
        self._client = client
        self._method = method
        self._uri = uri
        self._headers: dict[str, Any] = {}
        self._params: list[tuple[str, Any]] = []
        self._payload: Payload | None = None
        self._connect_timeout: float | None = None
        self._read_timeout: float | None = None
        self._if_modified_since: datetime | int | None = None
        self._use_caches = False
        self._ensure_success = False

    @property
    def method(self) -> Method:
        return self._method

    @property
    def uri(self) -> str:
        return self._uri

    def header(self, name: str, value: Any) -> RequestBuilder:
        """Set a request header (highest precedence). None removes it."""
        set_header_value(self._headers, name, value)
        return self

    def param(self, name: str, value: Any) -> RequestBuilder:
        """Add a query parameter (GET only). List values repeat the key."""
        self._params.append((name, value))
        return self

    def params(self, values: Mapping[str, Any]) -> RequestBuilder:
        for name, value in values.items():
            self.param(name, value)
        return self

    def form(self, fields: Mapping[str, Any]) -> RequestBuilder:
        """Send fields as application/x-www-form-urlencoded."""
        return self._set_payload(FormPayload, fields=dict(fields))

    def json(self, data: dict[str, Any] | list[Any]) -> RequestBuilder:
        """Send a JSON object or array."""
        return self._set_payload(JsonPayload, data=data)

    def body(self, body: Any) -> RequestBuilder:
        """Set the body, choosing the payload kind from the value's type.

        bytes -> raw bytes, str -> text, Path -> file (streamed), object with
        read() -> stream, dict/list -> JSON. Use form() for form fields.
        """
        if body is None:
            self._payload = None
            return self
        if isinstance(body, (bytes, bytearray, memoryview)):
            return self._set_payload(BytesPayload, data=bytes(body))
        if isinstance(body, str):
            return self._set_payload(TextPayload, text=body)
        if isinstance(body, Path):
            return self._set_payload(FilePayload, path=body)
        if isinstance(body, (dict, list)):
            return self._set_payload(JsonPayload, data=body)
        if callable(getattr(body, "read", None)):
            return self._set_payload(StreamPayload, stream=body)
        raise ConfigurationError(f"Unsupported body type: {type(body).__name__}")

    def connect_timeout(self, seconds: float) -> RequestBuilder:
        self._connect_timeout = seconds
        return self

    def read_timeout(self, seconds: float) -> RequestBuilder:
        self._read_timeout = seconds
        return self

    def if_modified_since(self, value: datetime | int) -> RequestBuilder:
        """Send If-Modified-Since. int values are epoch milliseconds."""
        self._if_modified_since = value
        return self

    def use_caches(self, use_caches: bool = True) -> RequestBuilder:
        self._use_caches = use_caches
        return self

    def ensure_success(self, ensure_success: bool = True) -> RequestBuilder:
        """Fail with HttpStatusError when the status is outside 200-299."""
        self._ensure_success = ensure_success
        return self

    def build(self) -> RequestCase:
        """Freeze the builder's state into a RequestCase."""
        try:
            return RequestCase(
                method=self._method,
                uri=self._uri,
                headers=dict(self._headers),
                params=list(self._params),
                payload=self._payload,
                connect_timeout=self._connect_timeout,
                read_timeout=self._read_timeout,
                if_modified_since=self._if_modified_since,
                use_caches=self._use_caches,
                ensure_success=self._ensure_success,
            )
        except ValidationError as e:
            raise ConfigurationError(f"Invalid request: {e}", cause=e) from e

    def execute(self, shape: ResultShape = ResultShape.NONE) -> ResponseCase:
        return self._client.execute(self.build(), shape)

    def as_void(self) -> ResponseCase:
        """Execute and discard the body."""
        return self.execute(ResultShape.NONE)

    def as_bytes(self) -> ResponseCase:
        return self.execute(ResultShape.BYTES)

    def as_text(self) -> ResponseCase:
        return self.execute(ResultShape.TEXT)

    def as_json_object(self) -> ResponseCase:
        return self.execute(ResultShape.JSON_OBJECT)

    def as_json_array(self) -> ResponseCase:
        return self.execute(ResultShape.JSON_ARRAY)

    def _set_payload(self, payload_cls: type, **fields: Any) -> RequestBuilder:
        if not self._method.allows_body:
            raise ConfigurationError(f"{self._method.value} requests cannot carry a body")
        try:
            self._payload = payload_cls(**fields)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid payload: {e}", cause=e) from e
        return self
