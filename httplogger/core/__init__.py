"""
HTTP Logger Core Module
"""

from httplogger.core.certs import CertificateProvider, load_or_create_authority
from httplogger.core.engine import RequestEngine
from httplogger.core.handler import ConnectionHandler
from httplogger.core.models import ProxyRequest
from httplogger.core.server import ProxyServer, create_proxy_server
from httplogger.core.trace import TraceSink, TrafficLog

__all__ = [
    "CertificateProvider",
    "ConnectionHandler",
    "ProxyRequest",
    "ProxyServer",
    "RequestEngine",
    "TraceSink",
    "TrafficLog",
    "create_proxy_server",
    "load_or_create_authority",
]
