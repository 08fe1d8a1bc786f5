"""URI composition and query-string encoding."""

from __future__ import annotations

from typing import Any, Iterable, Mapping
from urllib.parse import quote

from restcall.config_loader import first_present
from restcall.headers import value_to_str
from restcall.models import Method


def resolve_base_uri(instance_base_uri: str | None, process_base_uri: str | None) -> str | None:
    """Instance base URI wins over the process-wide one; None falls through."""
    return first_present(instance_base_uri, process_base_uri)


def compose_uri(base_uri: str | None, path_or_uri: str) -> str:
    """Prefix path_or_uri with base_uri.

    Concatenation is literal: no slash insertion, normalization or validation.
    """
    if base_uri is None:
        return path_or_uri
    return base_uri + path_or_uri


def _param_to_str(name: str, value: Any) -> str:
    if value is None:
        return ""
    return value_to_str(value, f"parameter '{name}'")


def _encode(text: str) -> str:
    return quote(text, safe="", encoding="utf-8")


def _iter_pairs(params: Mapping[str, Any] | Iterable[tuple[str, Any]]) -> Iterable[tuple[str, Any]]:
    items = params.items() if isinstance(params, Mapping) else params
    for name, value in items:
        if isinstance(value, (list, tuple, set, frozenset)):
            for item in value:
                yield name, item
        else:
            yield name, value


def query_string(params: Mapping[str, Any] | Iterable[tuple[str, Any]]) -> str:
    """Encode params as ``k1=v1&k2=v2``.

    Keys and values are UTF-8 percent-encoded (space becomes %20). List,
    tuple and set values repeat the key once per item.
    """
    return "&".join(
        f"{_encode(name)}={_encode(_param_to_str(name, value))}"
        for name, value in _iter_pairs(params)
    )


def append_query(uri: str, method: Method, params: Iterable[tuple[str, Any]]) -> str:
    """Append ``?query`` to a GET URI that has params and no query string yet."""
    params = list(params)
    if method is not Method.GET or not params or "?" in uri:
        return uri
    return f"{uri}?{query_string(params)}"
