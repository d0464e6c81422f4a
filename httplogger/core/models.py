"""
HTTP Logger Data Models
=======================
The per-connection request record handed to trace sinks, plus the small
value types the engine passes around.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, NamedTuple, Optional

AGENT_NAME = "http-logger.net"
PROXIED_BY_HEADER = ("X-Proxied-By", AGENT_NAME)

_VERSION_RE = re.compile(r"^HTTP/(\d+)\.(\d+)$", re.IGNORECASE)


# ── Enums ────────────────────────────────────────────────────────────────────

class EngineState(str, Enum):
    """Lifecycle of one client connection inside the engine."""
    START = "start"
    REQUEST_LINE_PARSED = "request_line_parsed"
    PLAIN_HTTP = "plain_http"
    TLS_INTERCEPTED = "tls_intercepted"
    HEADERS_READ = "headers_read"
    BODY_FORWARDED = "body_forwarded"
    RESPONSE_RELAYED = "response_relayed"
    DONE = "done"
    FAILED = "failed"


# ── Value Types ──────────────────────────────────────────────────────────────

class HttpVersion(NamedTuple):
    major: int
    minor: int

    @classmethod
    def parse(cls, token: str) -> Optional["HttpVersion"]:
        """Parse an ``HTTP/x.y`` token, returning None when it is malformed."""
        match = _VERSION_RE.match(token.strip())
        if not match:
            return None
        return cls(int(match.group(1)), int(match.group(2)))

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}"


# ── Data Models ──────────────────────────────────────────────────────────────

@dataclass
class ProxyRequest:
    """One proxied exchange, from the first request line to the relayed response."""
    client_ip: str = ""
    timestamp: datetime = field(default_factory=datetime.now)
    method: str = ""
    remote_uri: str = ""
    version: HttpVersion = HttpVersion(1, 1)
    content_length: int = 0
    is_https: bool = False
    initialization_succeeded: bool = False
    status_code: Optional[int] = None
    error: str = ""
    duration_ms: float = 0.0
    response_bytes: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "client_ip": self.client_ip,
            "timestamp": self.timestamp.isoformat(),
            "method": self.method,
            "remote_uri": self.remote_uri,
            "version": str(self.version),
            "content_length": self.content_length,
            "is_https": self.is_https,
            "initialization_succeeded": self.initialization_succeeded,
            "status_code": self.status_code,
            "error": self.error,
            "duration_ms": round(self.duration_ms, 2),
            "response_bytes": self.response_bytes,
        }

    def summary(self) -> str:
        """One-line summary."""
        status = f" → {self.status_code}" if self.status_code is not None else ""
        error = f" [{self.error}]" if self.error else ""
        return (f"{self.client_ip} {self.method} {self.remote_uri}{status} "
                f"({self.duration_ms:.0f}ms, {self.response_bytes}B){error}")
