"""General helpers: IP masking, address splitting, random strings and JSON lookups."""

from __future__ import annotations

import json
import os
import re
import secrets
from pathlib import Path
from typing import Any

DNS_SERVERS = ["1.1.1.1:53", "223.5.5.5:53"]

_LETTERS = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"
_UINT64_MASK = (1 << 64) - 1

_IPV4_RE = re.compile(r"(\d*\.).*(\.\d*)", re.ASCII)
_IPV6_RE = re.compile(r"(\w*:\w*:).*(:\w*:\w*)", re.ASCII)


class GjsonNotFoundError(LookupError):
    """The requested JSON path does not exist."""

    def __init__(self, message: str = "specified path does not exist") -> None:
        super().__init__(message)


class GjsonWrongTypeError(ValueError):
    """The JSON value is not of the expected type."""

    def __init__(self, message: str = "wrong type") -> None:
        super().__init__(message)


def is_windows() -> bool:
    """Return True when running on a Windows-style path layout."""
    return os.sep == "\\" and os.pathsep == ";"


def ip_desensitize(ip_addr: str) -> str:
    """Mask the middle part of IPv4 and IPv6 addresses."""
    ip_addr = _IPV4_RE.sub(r"\1****\2", ip_addr)
    return _IPV6_RE.sub(r"\1****\2", ip_addr)


def split_ip_addr(v4v6_bundle: str) -> tuple[str, str, str]:
    """Split a "v4/v6" bundle into (ipv4, ipv6, valid_ip)."""
    parts = v4v6_bundle.split("/")
    if len(parts) > 1:
        return parts[0], parts[1], parts[0]
    single = parts[0]
    if ":" in single:
        return "", single, single
    return single, "", single


def is_file_exists(path: str | os.PathLike[str]) -> bool:
    """Return True if something exists at the given path."""
    try:
        Path(path).stat()
    except OSError:
        return False
    return True


def generate_random_string(n: int) -> str:
    """Return a cryptographically random alphanumeric string of length n."""
    return "".join(secrets.choice(_LETTERS) for _ in range(n))


def uint64_sub_int64(a: int, b: int) -> int:
    """Subtract a signed value from an unsigned 64-bit one, clamping at zero."""
    if b < 0:
        return (a + (-b)) & _UINT64_MASK
    if a < b:
        return 0
    return a - b


def _split_path(path: str) -> list[str]:
    parts: list[str] = []
    current: list[str] = []
    escaped = False
    for ch in path:
        if escaped:
            current.append(ch)
            escaped = False
        elif ch == "\\":
            escaped = True
        elif ch == ".":
            parts.append("".join(current))
            current = []
        else:
            current.append(ch)
    parts.append("".join(current))
    return parts


def gjson_get(data: str | bytes, path: str) -> Any:
    """Look up a dot-separated path in a JSON document.

    Object keys are matched literally (use a backslash to escape a dot),
    array elements by index, and ``#`` yields an array's length.
    """
    if not path:
        raise GjsonNotFoundError()
    try:
        value: Any = json.loads(data)
    except (ValueError, TypeError) as err:
        raise GjsonNotFoundError() from err
    for part in _split_path(path):
        if isinstance(value, dict):
            if part not in value:
                raise GjsonNotFoundError()
            value = value[part]
        elif isinstance(value, list):
            if part == "#":
                value = len(value)
            elif part.isdigit() and int(part) < len(value):
                value = value[int(part)]
            else:
                raise GjsonNotFoundError()
        else:
            raise GjsonNotFoundError()
    return value


class _RawNumber(str):
    """A JSON number kept in its source spelling."""


def _dump(value: Any) -> str:
    if isinstance(value, dict):
        return "{" + ",".join(f"{json.dumps(k, ensure_ascii=False)}:{_dump(v)}" for k, v in value.items()) + "}"
    if isinstance(value, list):
        return "[" + ",".join(_dump(v) for v in value) + "]"
    if isinstance(value, _RawNumber):
        return str(value)
    if value is True:
        return "true"
    if value is False:
        return "false"
    if value is None:
        return "null"
    return json.dumps(value, ensure_ascii=False)


def _as_string(value: Any) -> str:
    if value is None:
        return ""
    if value is True:
        return "true"
    if value is False:
        return "false"
    if isinstance(value, (dict, list)):
        return _dump(value)
    return str(value)


def parse_string_map(json_object: str) -> dict[str, str] | None:
    """Parse a JSON object into a mapping of strings; None for empty input."""
    if json_object == "":
        return None
    try:
        parsed = json.loads(json_object, parse_int=_RawNumber, parse_float=_RawNumber)
    except ValueError as err:
        raise GjsonWrongTypeError() from err
    if not isinstance(parsed, dict):
        raise GjsonWrongTypeError()
    return {key: _as_string(value) for key, value in parsed.items()}