"""Shared fixtures for HTTP Logger tests."""

import io
import socket

import pytest

from httplogger.core.certs import CertificateProvider, generate_root_authority
from httplogger.core.upstream import UpstreamResponse


class FakeUpstream:
    """Stands in for ``UpstreamClient``; records what the engine sends."""

    def __init__(self, status_code=200, reason="OK", headers=None, body=b"hello", error=None):
        self.status_code = status_code
        self.reason = reason
        self.headers = headers if headers is not None else [("Content-Type", "text/plain")]
        self.body = body
        self.error = error
        self.sent = []
        self.bodies = []
        self.closed = 0

    def _on_close(self):
        self.closed += 1

    def send(self, outbound):
        self.sent.append(outbound)
        self.bodies.append(bytes(outbound.body) if outbound.body is not None else None)
        if self.error is not None:
            raise self.error
        stream = io.BytesIO(self.body) if self.body is not None else None
        return UpstreamResponse(
            self.status_code,
            self.reason,
            list(self.headers),
            stream,
            content_length=len(self.body) if self.body is not None else None,
            on_close=self._on_close,
        )


def read_all(sock, timeout=5.0):
    """Read from *sock* until the peer closes."""
    sock.settimeout(timeout)
    chunks = []
    while True:
        data = sock.recv(65536)
        if not data:
            break
        chunks.append(data)
    return b"".join(chunks)


@pytest.fixture(scope="session")
def authority():
    return generate_root_authority()


@pytest.fixture
def certificates(authority):
    return CertificateProvider(authority)


@pytest.fixture
def socket_pair():
    client, server = socket.socketpair()
    client.settimeout(5)
    yield client, server
    client.close()
    server.close()
