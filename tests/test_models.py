"""
Tests for HTTP Logger data models and errors.
"""

import errno
import logging
from datetime import datetime

import pytest

from httplogger.core.errors import (
    HeaderError,
    InitializationError,
    UpstreamError,
    is_client_disconnect,
)
from httplogger.core.models import EngineState, HttpVersion, ProxyRequest


# ── HttpVersion ──────────────────────────────────────────────────────────────


class TestHttpVersion:
    @pytest.mark.parametrize("token,expected", [
        ("HTTP/1.1", HttpVersion(1, 1)),
        ("HTTP/1.0", HttpVersion(1, 0)),
        ("http/2.0", HttpVersion(2, 0)),
    ])
    def test_parse(self, token, expected):
        assert HttpVersion.parse(token) == expected

    @pytest.mark.parametrize("token", ["HTTP/1", "HTTPS/1.1", "1.1", "HTTP/a.b", ""])
    def test_parse_malformed(self, token):
        assert HttpVersion.parse(token) is None

    def test_str(self):
        assert str(HttpVersion(1, 0)) == "1.0"


# ── ProxyRequest ─────────────────────────────────────────────────────────────


class TestProxyRequest:
    def test_defaults(self):
        req = ProxyRequest()
        assert req.initialization_succeeded is False
        assert req.is_https is False
        assert req.content_length == 0
        assert req.version == HttpVersion(1, 1)
        assert req.status_code is None

    def test_to_dict(self):
        req = ProxyRequest(client_ip="1.2.3.4", timestamp=datetime(2026, 5, 6, 7, 8, 9),
                           method="GET", remote_uri="http://x.com/", status_code=200,
                           duration_ms=12.3456)
        d = req.to_dict()
        assert d["client_ip"] == "1.2.3.4"
        assert d["timestamp"] == "2026-05-06T07:08:09"
        assert d["version"] == "1.1"
        assert d["duration_ms"] == 12.35
        assert d["status_code"] == 200

    def test_summary(self):
        req = ProxyRequest(client_ip="1.2.3.4", method="POST", remote_uri="http://x.com/login",
                           status_code=401, response_bytes=512, error="oops")
        s = req.summary()
        assert "POST" in s
        assert "http://x.com/login" in s
        assert "401" in s
        assert "512B" in s
        assert "[oops]" in s

    def test_engine_state_values(self):
        assert EngineState.DONE == "done"
        assert EngineState.TLS_INTERCEPTED.value == "tls_intercepted"


# ── Errors ───────────────────────────────────────────────────────────────────


class TestErrors:
    def test_initialization_error_level(self):
        assert InitializationError("x").level == logging.WARNING
        assert InitializationError("x", level=logging.DEBUG).level == logging.DEBUG

    def test_header_error_message(self):
        err = HeaderError("Upgrade", "h2c", "Nope.")
        assert str(err) == "Could not add header Upgrade, value: h2c. Nope."

    def test_upstream_error_message(self):
        assert str(UpstreamError("http://x/")) == "Upstream request to http://x/ failed"
        assert "timed out" in str(UpstreamError("http://x/", TimeoutError("timed out")))

    @pytest.mark.parametrize("exc", [
        ConnectionResetError(),
        ConnectionAbortedError(),
        BrokenPipeError(),
        OSError(errno.ECONNRESET, "reset"),
        OSError(errno.EPIPE, "pipe"),
    ])
    def test_client_disconnect(self, exc):
        assert is_client_disconnect(exc)

    @pytest.mark.parametrize("exc", [OSError(errno.EIO, "io"), ValueError("x"), TimeoutError()])
    def test_not_client_disconnect(self, exc):
        assert not is_client_disconnect(exc)
