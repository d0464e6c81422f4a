"""
HTTP Logger Connection Handler
==============================
Runs one ``RequestEngine`` over an accepted socket with lifecycle
guarantees: the socket is always closed, exceptions never reach the accept
loop, and every initialized request is handed to the trace sink.
"""

from __future__ import annotations

import logging
import socket
from typing import Optional, Tuple

from httplogger.core.certs import CertificateProvider
from httplogger.core.engine import RequestEngine
from httplogger.core.errors import ProxyError, UpstreamError
from httplogger.core.models import ProxyRequest
from httplogger.core.trace import TraceSink
from httplogger.core.upstream import UpstreamClient

logger = logging.getLogger(__name__)


class ConnectionHandler:
    """Processes a single client connection."""

    def __init__(
        self,
        certificates: Optional[CertificateProvider],
        trace_sink: Optional[TraceSink] = None,
        upstream: Optional[UpstreamClient] = None,
        client_timeout: Optional[float] = None,
    ):
        self.certificates = certificates
        self.trace_sink = trace_sink
        self.upstream = upstream or UpstreamClient()
        self.client_timeout = client_timeout

    def handle(self, conn: socket.socket, client_address: Tuple = ("", 0)) -> Optional[ProxyRequest]:
        """Handle *conn* to completion.

        Returns the traced request, or None when nothing was traced.
        """
        engine: Optional[RequestEngine] = None
        traced: Optional[ProxyRequest] = None
        try:
            conn.settimeout(self.client_timeout)
            engine = RequestEngine(conn, client_address, self.certificates, self.upstream)
            request = engine.parse_request()
            if not request.initialization_succeeded:
                return None

            try:
                engine.execute(request)
            except UpstreamError as e:
                request.error = str(e)
                logger.error(str(e))
            except Exception as e:
                request.error = str(e)
                raise
            finally:
                self._trace(request)
                traced = request

        except ProxyError as e:
            logger.warning(f"Proxy error from {client_address}: {e}")
        except Exception as e:
            logger.exception(f"Unhandled error processing client {client_address}: {e}")
        finally:
            if engine is not None:
                try:
                    engine.close()
                except OSError as e:
                    logger.debug(f"Error closing client transport: {e}")
            conn.close()
        return traced

    def _trace(self, request: ProxyRequest) -> None:
        if self.trace_sink is None:
            return
        try:
            self.trace_sink.trace_proxy_request(request)
        except Exception as e:
            logger.error(f"Trace sink failed for {request.remote_uri}: {e}")
