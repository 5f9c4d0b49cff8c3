"""
Named column transforms.

Field maps refer to transforms by name only; the set is closed so every
map stays enumerable and testable. Each transform is called as
``fn(value, column, row)`` and returns the replacement value.
"""
from __future__ import annotations

import html
import ipaddress
import logging
import mimetypes
from enum import Enum
from typing import Any, Callable, Dict, Mapping

import pendulum

LOG = logging.getLogger(__name__)

DEFAULT_MIME = "application/octet-stream"


class Transform(str, Enum):
    TIMESTAMP_TO_DATE = "timestamp_to_date"
    LONG_TO_IP = "long_to_ip"
    EMPTY_TO_ZERO = "empty_to_zero"
    MIME_FROM_EXTENSION = "mime_from_extension"
    NOT = "not"
    NULL_IF_EMPTY = "null_if_empty"
    HTML_DECODE = "html_decode"


def _truthy(value: Any) -> bool:
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8", errors="ignore")
    if isinstance(value, str):
        return value.strip() not in ("", "0")
    return bool(value)


def timestamp_to_date(value: Any, column: str, row: Mapping[str, Any]) -> str | None:
    if not _truthy(value):
        return None
    try:
        ts = float(value)
    except (TypeError, ValueError):
        LOG.debug("timestamp_to_date: %s=%r is not numeric", column, value)
        return None
    return pendulum.from_timestamp(ts, tz="UTC").to_datetime_string()


def long_to_ip(value: Any, column: str, row: Mapping[str, Any]) -> str | None:
    if value is None or value == "":
        return None
    try:
        if isinstance(value, (bytes, bytearray, memoryview)):
            return str(ipaddress.ip_address(bytes(value)))
        number = int(value)
        if number < 0:
            number &= 0xFFFFFFFF  # signed 32-bit columns
        return str(ipaddress.ip_address(number))
    except (TypeError, ValueError):
        LOG.debug("long_to_ip: %s=%r is not a packed address", column, value)
        return None


def empty_to_zero(value: Any, column: str, row: Mapping[str, Any]) -> Any:
    return 0 if value is None or value == "" else value


def mime_from_extension(value: Any, column: str, row: Mapping[str, Any]) -> str:
    if not value:
        return DEFAULT_MIME
    mime, _ = mimetypes.guess_type(str(value), strict=False)
    return mime or DEFAULT_MIME


def not_filter(value: Any, column: str, row: Mapping[str, Any]) -> int:
    return 0 if _truthy(value) else 1


def null_if_empty(value: Any, column: str, row: Mapping[str, Any]) -> Any:
    return value if _truthy(value) else None


def html_decode(value: Any, column: str, row: Mapping[str, Any]) -> Any:
    return html.unescape(value) if isinstance(value, str) else value


TRANSFORMS: Dict[Transform, Callable[[Any, str, Mapping[str, Any]], Any]] = {
    Transform.TIMESTAMP_TO_DATE: timestamp_to_date,
    Transform.LONG_TO_IP: long_to_ip,
    Transform.EMPTY_TO_ZERO: empty_to_zero,
    Transform.MIME_FROM_EXTENSION: mime_from_extension,
    Transform.NOT: not_filter,
    Transform.NULL_IF_EMPTY: null_if_empty,
    Transform.HTML_DECODE: html_decode,
}


def as_transform(kind: Transform | str) -> Transform:
    """Accept an enum member or its name; anything else is a map bug."""
    try:
        return Transform(kind)
    except ValueError as e:
        known = ", ".join(t.value for t in Transform)
        raise ValueError(f"Unknown transform {kind!r}; expected one of: {known}") from e


def apply(kind: Transform | str, value: Any, column: str, row: Mapping[str, Any]) -> Any:
    return TRANSFORMS[as_transform(kind)](value, column, row)
