"""
HTTP Logger Upstream Client
===========================
Issues the outbound request to the origin with ``requests`` and exposes the
raw, undecoded response so it can be relayed byte for byte.

Each exchange gets its own session, closed afterwards: no proxies from the
environment, no pooled keep-alive, no redirects, no content decoding, and no
default headers beyond what the client sent.
"""

from __future__ import annotations

import logging
from typing import BinaryIO, List, Optional, Tuple

import requests
from requests.structures import CaseInsensitiveDict

from httplogger.core.errors import UpstreamError
from httplogger.core.headers import OutboundRequest

logger = logging.getLogger(__name__)

UPSTREAM_TIMEOUT = 15


class UpstreamResponse:
    """Status, ordered headers and the raw body stream of an origin response."""

    def __init__(
        self,
        status_code: int,
        reason: str,
        headers: List[Tuple[str, str]],
        body: Optional[BinaryIO],
        content_length: Optional[int] = None,
        on_close=None,
    ):
        self.status_code = status_code
        self.reason = reason
        self.headers = headers
        self.body = body
        self.content_length = content_length
        self._on_close = on_close

    def read(self, size: int) -> bytes:
        if self.body is None:
            return b""
        return self.body.read(size)

    def close(self) -> None:
        try:
            if self.body is not None:
                self.body.close()
        finally:
            if self._on_close is not None:
                self._on_close()
                self._on_close = None


class _RawBody:
    """File-like view of a urllib3 response that never decodes content."""

    def __init__(self, raw):
        self._raw = raw

    def read(self, size: int) -> bytes:
        return self._raw.read(size, decode_content=False)

    def close(self) -> None:
        self._raw.close()


def _declared_length(headers: List[Tuple[str, str]]) -> Optional[int]:
    for name, value in headers:
        if name.lower() == "content-length":
            try:
                length = int(value.strip())
            except ValueError:
                return None
            return length if length >= 0 else None
    return None


def merge_request_headers(items: List[Tuple[str, str]]) -> CaseInsensitiveDict:
    """Collapse repeated request headers into one comma-joined value, keeping order."""
    merged: CaseInsensitiveDict = CaseInsensitiveDict()
    for name, value in items:
        if name in merged:
            merged[name] = f"{merged[name]}, {value}"
        else:
            merged[name] = value
    return merged


def _raw_header_items(raw) -> List[Tuple[str, str]]:
    """Every header line in arrival order, duplicates kept apart."""
    headers = raw.headers
    if hasattr(headers, "iteritems"):
        return list(headers.iteritems())
    return list(headers.items())


class UpstreamClient:
    """Sends ``OutboundRequest`` objects to origin servers."""

    def __init__(self, timeout: float = UPSTREAM_TIMEOUT, verify_tls: bool = True):
        self.timeout = timeout
        self.verify_tls = verify_tls

    def _new_session(self) -> requests.Session:
        session = requests.Session()
        session.trust_env = False
        session.proxies = {}
        session.headers = CaseInsensitiveDict()
        return session

    def send(self, outbound: OutboundRequest) -> UpstreamResponse:
        """Issue *outbound* and return the streamed response.

        Raises:
            UpstreamError: on connect, timeout or protocol failures.
        """
        session = self._new_session()
        body = bytes(outbound.body) if outbound.body is not None else None
        try:
            response = session.request(
                outbound.method,
                outbound.url,
                headers=merge_request_headers(outbound.header_items()),
                data=body,
                timeout=self.timeout,
                allow_redirects=False,
                stream=True,
                verify=self.verify_tls,
            )
        except requests.RequestException as e:
            session.close()
            raise UpstreamError(outbound.url, e) from e

        def release() -> None:
            response.close()
            session.close()

        raw = response.raw
        headers = _raw_header_items(raw) if raw is not None else list(response.headers.items())
        logger.debug(f"{outbound.method} {outbound.url} → {response.status_code}")
        return UpstreamResponse(
            status_code=response.status_code,
            reason=response.reason or "",
            headers=headers,
            body=_RawBody(raw) if raw is not None else None,
            content_length=_declared_length(headers),
            on_close=release,
        )
