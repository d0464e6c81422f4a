"""
HTTP Logger: Intercepting HTTP/HTTPS Forward Proxy
==================================================

Components:
  • Engine      – per-connection HTTP/1.x parsing, CONNECT/TLS interception
  • Server      – accept loop, worker pool, lifecycle
  • Certs       – local root authority and per-host leaf certificates
  • Trace       – captured request records, JSON export

Cross-platform: Linux · macOS · Windows
"""

__version__ = "1.0.0"
__app_name__ = "HTTP Logger"
