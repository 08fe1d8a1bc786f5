"""Header merging and header value conversion.

Three scopes are merged key-for-key: process-wide < client < request.
Header names keep their case; lookups for "is this header already set"
are case-insensitive since HTTP header names are.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from email.utils import format_datetime
from typing import Any, Mapping

from restcall.errors import ConfigurationError


def http_date(value: datetime | date | int) -> str:
    """Format a datetime, date or epoch-milliseconds value as an RFC 1123 HTTP-date."""
    if isinstance(value, int) and not isinstance(value, bool):
        value = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    elif not isinstance(value, datetime):
        value = datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    elif value.tzinfo is None:
        # Naive datetimes are taken as UTC
        value = value.replace(tzinfo=timezone.utc)
    return format_datetime(value.astimezone(timezone.utc), usegmt=True)


def value_to_str(value: Any, context: str) -> str:
    """Convert a header or parameter value to its canonical string form.

    Raises:
        ConfigurationError: If the value type is not supported. context
            names the offending header or parameter in the message.
    """
    if isinstance(value, str):
        return value
    # bool before int: bool is a subclass of int
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return http_date(value)
    raise ConfigurationError(f"Unsupported value type {type(value).__name__} for {context}")


def header_value_to_str(name: str, value: Any) -> str:
    return value_to_str(value, f"header '{name}'")


def merge_headers(
    process_headers: Mapping[str, Any] | None,
    instance_headers: Mapping[str, Any] | None,
    request_headers: Mapping[str, Any] | None,
) -> dict[str, str]:
    """Merge header scopes into one effective set of string headers.

    Each scope is copied before it is read so a concurrent writer cannot
    change it mid-merge. A None value counts as "not set in this scope", so
    a lower scope's value shines through.
    """
    # lowercase name -> (name as last set, value)
    merged: dict[str, tuple[str, Any]] = {}
    for scope in (process_headers, instance_headers, request_headers):
        if not scope:
            continue
        for name, value in dict(scope).items():
            if value is not None:
                merged[name.lower()] = (name, value)

    return {name: header_value_to_str(name, value) for name, value in merged.values()}


def set_header_value(headers: dict[str, Any], name: str, value: Any) -> None:
    """Set a header in one scope, replacing any entry with the same name in any case.

    None removes the header from the scope.
    """
    lower = name.lower()
    for key in [key for key in headers if key.lower() == lower]:
        del headers[key]
    if value is not None:
        headers[name] = value


def find_header(headers: Mapping[str, str], name: str) -> str | None:
    """Return the value of a header by case-insensitive name, or None."""
    lower = name.lower()
    for key, value in headers.items():
        if key.lower() == lower:
            return value
    return None


def ensure_header(headers: dict[str, str], name: str, value: str) -> None:
    """Set a header unless one with the same name (any case) is already present."""
    if find_header(headers, name) is None:
        headers[name] = value
