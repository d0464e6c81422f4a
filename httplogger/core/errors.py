"""
HTTP Logger Errors
==================
Exception hierarchy for the per-connection proxy engine.
"""

from __future__ import annotations

import errno
import logging
from typing import Optional

# Low-level signals raised when the browser/client drops the connection
# while we are still writing to it.
CLIENT_DISCONNECT_ERRNOS = frozenset({
    errno.ECONNRESET,
    errno.ECONNABORTED,
    errno.EPIPE,
})


class ProxyError(Exception):
    """Base class for all proxy errors."""


class InitializationError(ProxyError):
    """The request line (or the first line after a TLS handshake) was unusable."""

    def __init__(self, message: str, level: int = logging.WARNING):
        self.level = level
        super().__init__(message)


class HeaderError(ProxyError):
    """A client header was rejected by the outbound header store."""

    def __init__(self, name: str, value: str, reason: str):
        self.name = name
        self.value = value
        self.reason = reason
        super().__init__(f"Could not add header {name}, value: {value}. {reason}")


class UpstreamError(ProxyError):
    """Connecting to, or talking with, the origin server failed."""

    def __init__(self, url: str, cause: Optional[BaseException] = None):
        self.url = url
        self.cause = cause
        message = f"Upstream request to {url} failed"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message)


def is_client_disconnect(exc: BaseException) -> bool:
    """Return True when *exc* means the client reset or aborted the connection."""
    if isinstance(exc, (ConnectionResetError, ConnectionAbortedError, BrokenPipeError)):
        return True
    return isinstance(exc, OSError) and exc.errno in CLIENT_DISCONNECT_ERRNOS
