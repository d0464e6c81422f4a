"""
HTTP Logger Header Translation
==============================
Maps client request headers onto the outbound request and rewrites the
origin's response headers before they are relayed back.

Request side:
  • well-known headers land on dedicated ``OutboundRequest`` fields
  • hop-by-hop headers are dropped
  • Content-Length is kept for body forwarding, never copied verbatim
  • everything else goes through ``HeaderStore``, which may reject it

Response side:
  • folded ``Set-Cookie`` values are split back into one entry per cookie
  • ``X-Proxied-By`` is appended last
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import format_datetime, parsedate_to_datetime
from typing import Iterable, Iterator, List, Optional, Tuple

from httplogger.core.errors import HeaderError
from httplogger.core.models import PROXIED_BY_HEADER, ProxyRequest

Header = Tuple[str, str]

# RFC 7230 token characters
_TOKEN_RE = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")
_FORBIDDEN_VALUE_CHARS = ("\r", "\n", "\0")

# A comma NOT followed by a space separates cookies that were folded into one
# value; the comma inside "Expires=Wed, 21 Oct ..." is followed by a space.
COOKIE_SPLIT_RE = re.compile(r",(?! )")

HOP_BY_HOP_HEADERS = frozenset({
    "proxy-connection",
    "connection",
    "keep-alive",
    "100-continue",
})

# Framing headers owned by the outbound connection itself
RESTRICTED_HEADERS = frozenset({
    "transfer-encoding",
    "te",
    "trailer",
    "upgrade",
})

# The relayed body is already de-chunked and framed by connection close
RELAY_DROPPED_HEADERS = frozenset({"transfer-encoding"})


# ── Header Store ─────────────────────────────────────────────────────────────

class HeaderStore:
    """Ordered, case-insensitive collection of outbound headers."""

    def __init__(self) -> None:
        self._items: List[Header] = []

    @staticmethod
    def validate(name: str, value: str) -> None:
        if not name or not _TOKEN_RE.match(name):
            raise HeaderError(name, value, "Header name is not a valid token.")
        if any(ch in value for ch in _FORBIDDEN_VALUE_CHARS):
            raise HeaderError(name, value, "Header value contains control characters.")
        if value[:1] in (" ", "\t"):
            raise HeaderError(name, value, "Header value has leading whitespace.")
        if name.lower() in RESTRICTED_HEADERS:
            raise HeaderError(name, value, "This header must be modified using the appropriate property.")

    def add(self, name: str, value: str) -> None:
        self.validate(name, value)
        self._items.append((name, value))

    def set(self, name: str, value: str) -> None:
        """Replace every existing entry for *name* with a single one."""
        self.validate(name, value)
        lowered = name.lower()
        kept = [(n, v) for n, v in self._items if n.lower() != lowered]
        self._items = kept + [(name, value)]

    def get(self, name: str) -> Optional[str]:
        lowered = name.lower()
        for n, v in self._items:
            if n.lower() == lowered:
                return v
        return None

    def items(self) -> List[Header]:
        return list(self._items)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.get(name) is not None

    def __iter__(self) -> Iterator[Header]:
        return iter(list(self._items))

    def __len__(self) -> int:
        return len(self._items)


# ── Outbound Request ─────────────────────────────────────────────────────────

@dataclass
class OutboundRequest:
    """The request we issue to the origin on behalf of the client."""
    url: str
    method: str = "GET"
    host: Optional[str] = None
    user_agent: Optional[str] = None
    accept: Optional[str] = None
    referer: Optional[str] = None
    content_type: Optional[str] = None
    expect: Optional[str] = None
    if_modified_since: Optional[datetime] = None
    headers: HeaderStore = field(default_factory=HeaderStore)
    body: Optional[bytearray] = None

    def open_body(self) -> bytearray:
        """Return the request body buffer, creating it on first use."""
        if self.body is None:
            self.body = bytearray()
        return self.body

    def header_items(self) -> List[Header]:
        """Every header that goes on the wire, dedicated fields first."""
        items: List[Header] = []
        for name, value in (
            ("Host", self.host),
            ("User-Agent", self.user_agent),
            ("Accept", self.accept),
            ("Referer", self.referer),
            ("Content-Type", self.content_type),
            ("Expect", self.expect),
        ):
            if value is not None:
                items.append((name, value))
        if self.if_modified_since is not None:
            items.append(("If-Modified-Since", format_datetime(self.if_modified_since, usegmt=True)))
        items.extend(self.headers.items())
        return items


# ── Request Translation ──────────────────────────────────────────────────────

def parse_content_length(value: str) -> int:
    try:
        length = int(value.strip())
    except ValueError:
        return 0
    return max(length, 0)


def parse_http_date(value: str) -> Optional[datetime]:
    """Parse the leading token of an If-Modified-Since value."""
    token = value.strip().split(";")[0].strip()
    if not token:
        return None
    try:
        parsed = parsedate_to_datetime(token)
    except (TypeError, ValueError, IndexError, OverflowError):
        return None
    if parsed is None or parsed.tzinfo is None:
        # format_datetime(usegmt=True) needs an aware UTC datetime
        return None
    return parsed.astimezone(timezone.utc)


def translate_request_header(
    outbound: OutboundRequest,
    request: ProxyRequest,
    name: str,
    value: str,
) -> None:
    """Apply one client header to *outbound*.

    Raises:
        HeaderError: when the header store rejects a pass-through header.
    """
    key = name.lower()

    if key == "host":
        outbound.host = value
    elif key == "user-agent":
        outbound.user_agent = value
    elif key == "accept":
        outbound.accept = value
    elif key == "referer":
        outbound.referer = value
    elif key == "content-type":
        outbound.content_type = value
    elif key == "expect":
        outbound.expect = value
    elif key == "if-modified-since":
        parsed = parse_http_date(value)
        if parsed is not None:
            outbound.if_modified_since = parsed
    elif key == "cookie":
        outbound.headers.set("Cookie", value)
    elif key in HOP_BY_HOP_HEADERS:
        pass
    elif key == "content-length":
        request.content_length = parse_content_length(value)
    else:
        outbound.headers.add(name, value)


# ── Response Translation ─────────────────────────────────────────────────────

def split_set_cookie(value: str) -> List[str]:
    """Split a folded Set-Cookie value into individual cookies."""
    return [part for part in COOKIE_SPLIT_RE.split(value) if part.strip()]


def transform_response_headers(headers: Iterable[Header]) -> List[Header]:
    """Rewrite origin response headers for relaying to the client."""
    result: List[Header] = []
    for name, value in headers:
        lowered = name.lower()
        if lowered in RELAY_DROPPED_HEADERS:
            continue
        if lowered == "set-cookie":
            result.extend(("Set-Cookie", cookie) for cookie in split_set_cookie(value))
        else:
            result.append((name, value))
    result.append(PROXIED_BY_HEADER)
    return result
