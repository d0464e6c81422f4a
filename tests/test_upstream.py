"""
Tests for the HTTP Logger upstream client.
"""

import io
from unittest.mock import MagicMock, patch

import pytest
import requests

from httplogger.core.errors import UpstreamError
from httplogger.core.headers import OutboundRequest
from httplogger.core.upstream import UpstreamClient, UpstreamResponse, merge_request_headers


def _fake_response(status=200, reason="OK", headers=None, body=b"data"):
    raw = MagicMock()
    raw.headers.iteritems.return_value = headers or [("Content-Length", str(len(body)))]
    stream = io.BytesIO(body)
    raw.read.side_effect = lambda size, decode_content=True: stream.read(size)
    response = MagicMock()
    response.status_code = status
    response.reason = reason
    response.raw = raw
    return response


def _outbound(**kwargs):
    outbound = OutboundRequest(url="http://example.com/api", **kwargs)
    outbound.headers.add("X-Custom", "1")
    return outbound


# ── UpstreamClient ───────────────────────────────────────────────────────────


class TestUpstreamClient:
    @patch("requests.Session.request")
    def test_request_options(self, mock_request):
        mock_request.return_value = _fake_response()
        UpstreamClient().send(_outbound(method="GET", host="example.com"))

        args, kwargs = mock_request.call_args
        assert args == ("GET", "http://example.com/api")
        assert kwargs["allow_redirects"] is False
        assert kwargs["stream"] is True
        assert kwargs["timeout"] == 15
        assert kwargs["verify"] is True
        assert kwargs["data"] is None
        assert dict(kwargs["headers"]) == {"Host": "example.com", "X-Custom": "1"}

    @patch("requests.Session.request")
    def test_post_body_sent(self, mock_request):
        mock_request.return_value = _fake_response()
        outbound = _outbound(method="POST")
        outbound.open_body().extend(b"payload")
        UpstreamClient(timeout=3, verify_tls=False).send(outbound)

        kwargs = mock_request.call_args.kwargs
        assert kwargs["data"] == b"payload"
        assert kwargs["timeout"] == 3
        assert kwargs["verify"] is False

    @patch("requests.Session.request")
    def test_response_raw_and_ordered(self, mock_request):
        headers = [("Set-Cookie", "a=1"), ("Content-Length", "4"), ("Set-Cookie", "b=2")]
        mock_request.return_value = _fake_response(status=404, reason="Not Found", headers=headers)
        response = UpstreamClient().send(_outbound())

        assert response.status_code == 404
        assert response.reason == "Not Found"
        assert response.headers == headers
        assert response.content_length == 4
        assert response.read(10) == b"data"
        mock_request.return_value.raw.read.assert_called_with(10, decode_content=False)

    @patch("requests.Session.request")
    def test_close_releases_response(self, mock_request):
        fake = _fake_response()
        mock_request.return_value = fake
        UpstreamClient().send(_outbound()).close()
        fake.close.assert_called_once()

    @patch("requests.Session.request")
    def test_connection_error_wrapped(self, mock_request):
        mock_request.side_effect = requests.ConnectionError("refused")
        with pytest.raises(UpstreamError) as exc:
            UpstreamClient().send(_outbound())
        assert exc.value.url == "http://example.com/api"
        assert "refused" in str(exc.value)

    @patch("requests.Session.request")
    def test_timeout_wrapped(self, mock_request):
        mock_request.side_effect = requests.Timeout("slow")
        with pytest.raises(UpstreamError):
            UpstreamClient().send(_outbound())

    def test_session_ignores_environment(self):
        session = UpstreamClient()._new_session()
        assert session.trust_env is False
        assert len(session.headers) == 0
        session.close()


# ── Helpers ──────────────────────────────────────────────────────────────────


class TestMergeRequestHeaders:
    def test_duplicates_joined(self):
        merged = merge_request_headers([("Accept", "a"), ("X-A", "1"), ("x-a", "2")])
        assert merged["X-A"] == "1, 2"
        assert list(merged.keys()) == ["Accept", "x-a"]


class TestUpstreamResponse:
    def test_close_runs_callback_once(self):
        calls = []
        response = UpstreamResponse(200, "OK", [], io.BytesIO(b"x"), on_close=lambda: calls.append(1))
        response.close()
        response.close()
        assert calls == [1]

    def test_read_without_body(self):
        assert UpstreamResponse(204, "No Content", [], None).read(10) == b""
