from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlparse

_ALLOWED_SCHEMES = ("http", "https")
_WHITESPACE_RE = re.compile(r"\s")


class InvalidURLError(ValueError):
    """Raised when a URL cannot be analyzed at all (malformed or non-http(s))."""


@dataclass(frozen=True)
class ParsedURL:
    raw: str
    scheme: str
    host: str
    port: int | None
    path: str


def parse_url(raw: Any) -> ParsedURL:
    if not isinstance(raw, str):
        raise InvalidURLError("URL must be a string.")

    value = raw.strip()
    if not value:
        raise InvalidURLError("Please provide a URL.")

    try:
        parsed = urlparse(value)
        port = parsed.port
    except ValueError as exc:
        raise InvalidURLError(f"Invalid URL format: {exc}") from exc

    scheme = (parsed.scheme or "").lower()
    if scheme not in _ALLOWED_SCHEMES:
        raise InvalidURLError("Only http(s) URLs can be analyzed.")

    host = parsed.hostname or ""
    if not host or _WHITESPACE_RE.search(host):
        raise InvalidURLError("Invalid URL format: missing or malformed host.")

    return ParsedURL(raw=value, scheme=scheme, host=host, port=port, path=parsed.path or "/")


def ascii_host(host: str | None) -> str | None:
    """Lowercased ASCII (punycode) form of a hostname, for comparing hosts.

    Chromium reports request URLs with punycode hosts while urlparse keeps
    whatever the caller wrote, so both sides of a comparison go through here.
    """
    if not host:
        return host
    host = host.lower()
    try:
        return host.encode("idna").decode("ascii")
    except UnicodeError:
        return host


def hostname_of(url: str) -> str | None:
    try:
        return ascii_host(urlparse(url).hostname)
    except ValueError:
        return None
