"""
HTTP Logger Request/Response Engine
===================================
Owns one client connection end to end:

    parse request line → [CONNECT: mint leaf cert, answer 200, serve TLS]
    → translate headers → forward POST body → call origin → relay response

One engine per accepted socket; nothing here is shared between connections
except the read-only certificate authority behind ``CertificateProvider``.
"""

from __future__ import annotations

import logging
import socket
import time
from datetime import datetime
from typing import Optional, Tuple
from urllib.parse import urlsplit

from httplogger.core.certs import CertificateProvider
from httplogger.core.errors import HeaderError, InitializationError, is_client_disconnect
from httplogger.core.headers import OutboundRequest, transform_response_headers, translate_request_header
from httplogger.core.models import AGENT_NAME, EngineState, HttpVersion, ProxyRequest
from httplogger.core.transport import ClientTransport, PlainTransport
from httplogger.core.upstream import UpstreamClient, UpstreamResponse

logger = logging.getLogger(__name__)

BUFFER_SIZE = 8192
# Upper bound for the single buffer sized from the origin's Content-Length
MAX_BUFFER_SIZE = 4 * 1024 * 1024


def _tunnel_host(target: str) -> str:
    """Host part of a CONNECT target such as ``example.com:443`` or ``[::1]:443``."""
    try:
        host = urlsplit(f"//{target}").hostname
    except ValueError:
        host = None
    return host or target.rsplit(":", 1)[0]


def _is_absolute(uri: str) -> bool:
    lowered = uri.lower()
    return lowered.startswith("http://") or lowered.startswith("https://")


class RequestEngine:
    """Parses, intercepts, forwards and relays a single proxied exchange."""

    def __init__(
        self,
        sock: socket.socket,
        client_address: Tuple = ("", 0),
        certificates: Optional[CertificateProvider] = None,
        upstream: Optional[UpstreamClient] = None,
    ):
        self.transport: ClientTransport = PlainTransport(sock)
        self.client_address = client_address
        self.certificates = certificates
        self.upstream = upstream or UpstreamClient()
        self.outbound: Optional[OutboundRequest] = None
        self.state = EngineState.START
        self._started = time.monotonic()

    # ── Request ──────────────────────────────────────────────────────────

    def parse_request(self) -> ProxyRequest:
        """Read the request line and headers from the client.

        Returns the request record; ``initialization_succeeded`` is False when
        the connection should be closed without going upstream.
        """
        client_ip = self.client_address[0] if self.client_address else ""
        request = ProxyRequest(client_ip=str(client_ip or ""), timestamp=datetime.now())

        try:
            self._initialize_request(request)
        except InitializationError as e:
            self.state = EngineState.FAILED
            request.initialization_succeeded = False
            logger.log(e.level, str(e))
            return request

        request.initialization_succeeded = True
        self.outbound = OutboundRequest(url=request.remote_uri, method=request.method)
        self._read_request_headers(request)

        if not _is_absolute(request.remote_uri) and self.outbound.host:
            request.remote_uri = f"http://{self.outbound.host}{request.remote_uri}"
        self.outbound.url = request.remote_uri
        self.state = EngineState.HEADERS_READ
        return request

    def _initialize_request(self, request: ProxyRequest) -> None:
        line = self.transport.readline()
        if not line:
            raise InitializationError("Data header of a proxy request was null or empty.")

        parts = line.split()
        if len(parts) < 3:
            raise InitializationError(f"Malformed request line: {line!r}")
        version = HttpVersion.parse(parts[2])
        if version is None:
            raise InitializationError(f"Malformed HTTP version in request line: {line!r}")

        request.method = parts[0]
        request.remote_uri = parts[1]
        request.version = version
        self.state = EngineState.REQUEST_LINE_PARSED

        if request.method.upper() == "CONNECT":
            self._intercept_tls(request)
        else:
            self.state = EngineState.PLAIN_HTTP

    def _intercept_tls(self, request: ProxyRequest) -> None:
        """Answer the CONNECT ourselves and terminate the client's TLS."""
        if self.certificates is None:
            raise InitializationError(f"HTTPS interception unavailable for CONNECT {request.remote_uri}")

        target = request.remote_uri
        request.is_https = True
        request.remote_uri = f"https://{target}"

        context = self.certificates.server_context(_tunnel_host(target))

        # The CONNECT headers are neither forwarded nor inspected
        while self.transport.readline():
            pass

        self.transport.write_line(f"HTTP/{request.version} 200 Connection established")
        self.transport.write_line(f"Timestamp: {datetime.now().strftime('%m/%d/%Y %H:%M:%S')}")
        self.transport.write_line(f"Proxy-agent: {AGENT_NAME}")
        self.transport.write_line()
        self.transport.flush()

        plain = self.transport
        try:
            self.transport = plain.upgrade(context)
            self.state = EngineState.TLS_INTERCEPTED
            line = self.transport.readline()
        except OSError as e:
            self.transport.close()
            plain.close()
            raise InitializationError(f"TLS interception of {target} failed: {e}") from e

        if not line:
            self.transport.close()
            raise InitializationError(f"No request received over TLS for {target}", level=logging.DEBUG)

        parts = line.split()
        if len(parts) < 2:
            self.transport.close()
            raise InitializationError(f"Malformed request line over TLS for {target}: {line!r}")

        request.method = parts[0]
        if _is_absolute(parts[1]):
            request.remote_uri = parts[1]
        else:
            request.remote_uri += parts[1]

    def _read_request_headers(self, request: ProxyRequest) -> None:
        request.content_length = 0
        while True:
            line = self.transport.readline()
            if not line:
                return
            name, sep, value = line.partition(": ")
            if not sep:
                logger.debug(f"Dropping malformed header line: {line!r}")
                continue
            value = value.strip(" \t")
            try:
                translate_request_header(self.outbound, request, name, value)
            except HeaderError as e:
                logger.error(str(e))

    # ── Execute ──────────────────────────────────────────────────────────

    def execute(self, request: ProxyRequest) -> None:
        """Forward the request body, call the origin and relay its response.

        Raises:
            UpstreamError: when the origin cannot be reached.
        """
        try:
            if request.method.upper() == "POST":
                self._forward_body(request)
            self.state = EngineState.BODY_FORWARDED

            try:
                response = self.upstream.send(self.outbound)
            except Exception:
                self.state = EngineState.FAILED
                raise
            finally:
                self.outbound.body = None

            if self._relay_response(request, response):
                self.state = EngineState.DONE
        finally:
            request.duration_ms = (time.monotonic() - self._started) * 1000

    def _forward_body(self, request: ProxyRequest) -> None:
        remaining = request.content_length
        if remaining <= 0:
            return
        body = self.outbound.open_body()
        while remaining > 0:
            chunk = self.transport.read(min(remaining, BUFFER_SIZE))
            if not chunk:
                break
            body.extend(chunk)
            remaining -= len(chunk)

    def _relay_response(self, request: ProxyRequest, response: UpstreamResponse) -> bool:
        """Write status, headers and body back to the client.

        Returns True when the whole response was relayed.
        """
        try:
            request.status_code = response.status_code
            self.transport.write_line(f"HTTP/1.0 {response.status_code} {response.reason}")
            for name, value in transform_response_headers(response.headers):
                self.transport.write_line(f"{name}: {value}")
            self.transport.write_line()
            self.transport.flush()

            if response.body is None:
                return True

            if response.content_length and response.content_length > 0:
                buffer_size = min(response.content_length, MAX_BUFFER_SIZE)
            else:
                buffer_size = BUFFER_SIZE

            while True:
                chunk = response.read(buffer_size)
                if not chunk:
                    break
                self.transport.write(chunk)
                request.response_bytes += len(chunk)
            self.transport.flush()
            self.state = EngineState.RESPONSE_RELAYED
            return True

        except Exception as e:
            self.state = EngineState.FAILED
            if is_client_disconnect(e):
                # Connection was closed by the browser/client, not an issue
                request.error = "client disconnected"
                return False
            request.error = str(e)
            logger.error(f"Error relaying response for {request.remote_uri}: {e}")
            return False

        finally:
            response.close()

    # ── Teardown ─────────────────────────────────────────────────────────

    def close(self) -> None:
        self.transport.close()
