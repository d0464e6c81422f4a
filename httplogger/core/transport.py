"""
HTTP Logger Client Transport
============================
Byte-stream view of one client connection. A connection starts on a
``PlainTransport``; a CONNECT tunnel upgrades it once to a ``TlsTransport``
over the same socket. The engine only sees ``readline`` / ``read`` /
``write`` / ``flush`` / ``close``.
"""

from __future__ import annotations

import logging
import socket
import ssl
from typing import Optional

from httplogger.core.errors import ProxyError

logger = logging.getLogger(__name__)

MAX_LINE_BYTES = 65536
HEADER_ENCODING = "iso-8859-1"


class ClientTransport:
    """Buffered line/byte access to a client socket."""

    is_tls = False

    def __init__(self, sock: socket.socket):
        self.sock = sock
        self._rfile = sock.makefile("rb")
        self._wfile = sock.makefile("wb")
        self.closed = False

    def readline(self) -> Optional[str]:
        """Read one CRLF/LF terminated line; None at end of stream."""
        raw = self._rfile.readline(MAX_LINE_BYTES + 1)
        if not raw:
            return None
        if len(raw) > MAX_LINE_BYTES:
            raise ProxyError(f"Line exceeds {MAX_LINE_BYTES} bytes")
        return raw.decode(HEADER_ENCODING).rstrip("\r\n")

    def read(self, size: int) -> bytes:
        """Read at most *size* bytes; an empty result means the client closed."""
        return self._rfile.read1(size)

    def write(self, data: bytes) -> None:
        self._wfile.write(data)

    def write_line(self, line: str = "") -> None:
        self.write(line.encode(HEADER_ENCODING, errors="replace") + b"\r\n")

    def flush(self) -> None:
        self._wfile.flush()

    def _close_files(self) -> None:
        for f in (self._rfile, self._wfile):
            try:
                f.close()
            except OSError as e:
                # Flushing pending output to a dead peer
                logger.debug(f"Error closing client stream: {e}")

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._close_files()
        self.sock.close()


class PlainTransport(ClientTransport):
    """The client connection as accepted, no encryption."""

    def upgrade(self, context: ssl.SSLContext) -> "TlsTransport":
        """Serve TLS on this connection's socket and return the decrypting layer.

        The plain transport must not be used afterwards.
        """
        self.flush()
        self._close_files()
        self.closed = True
        tls_sock = context.wrap_socket(self.sock, server_side=True)
        return TlsTransport(tls_sock, self.sock)


class TlsTransport(ClientTransport):
    """Decrypted view of an intercepted CONNECT tunnel."""

    is_tls = True

    def __init__(self, tls_sock: ssl.SSLSocket, raw_sock: socket.socket):
        super().__init__(tls_sock)
        self.raw_sock = raw_sock

    def close(self) -> None:
        if self.closed:
            return
        super().close()
        self.raw_sock.close()
