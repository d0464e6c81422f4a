"""
HTTP Logger Trace Sinks
=======================
Destinations for finished ``ProxyRequest`` records.

  • TrafficLog          – in-memory capture, callbacks, stats, JSON export
  • JsonLinesTraceSink  – one JSON object per line appended to a file
  • CompositeTraceSink  – fan a record out to several sinks

Sinks are called from worker threads and must be thread-safe.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import deque
from pathlib import Path
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Union

from httplogger.core.models import ProxyRequest

logger = logging.getLogger(__name__)


class TraceSink:
    """Receives every finished request record."""

    def trace_proxy_request(self, request: ProxyRequest) -> None:
        raise NotImplementedError


# ── In-Memory Capture ────────────────────────────────────────────────────────

class TrafficLog(TraceSink):
    """Bounded, thread-safe history of proxied requests."""

    def __init__(self, max_entries: int = 1000):
        self._traffic: Deque[ProxyRequest] = deque(maxlen=max_entries or None)
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[ProxyRequest], None]] = []
        self._total_requests = 0
        self._total_bytes = 0

    def trace_proxy_request(self, request: ProxyRequest) -> None:
        with self._lock:
            self._traffic.append(request)
            self._total_requests += 1
            self._total_bytes += request.response_bytes

        # Notify callbacks
        for cb in list(self._callbacks):
            try:
                cb(request)
            except Exception as e:
                logger.debug(f"Callback error: {e}")

    def on_request(self, callback: Callable[[ProxyRequest], None]) -> None:
        """Register a callback for new traced requests."""
        self._callbacks.append(callback)

    def get_traffic(
        self,
        limit: Optional[int] = None,
        filter_term: Optional[str] = None,
        method: Optional[str] = None,
    ) -> List[ProxyRequest]:
        """Traced requests, most recent first, optionally filtered."""
        with self._lock:
            traffic = list(self._traffic)

        if filter_term:
            term = filter_term.lower()
            traffic = [r for r in traffic if term in r.remote_uri.lower()]
        if method:
            traffic = [r for r in traffic if r.method.upper() == method.upper()]

        traffic.reverse()
        if limit:
            traffic = traffic[:limit]
        return traffic

    def clear(self) -> int:
        """Clear captured traffic. Returns number cleared."""
        with self._lock:
            count = len(self._traffic)
            self._traffic.clear()
            self._total_requests = 0
            self._total_bytes = 0
        return count

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            traffic = list(self._traffic)
            total_requests = self._total_requests
            total_bytes = self._total_bytes

        methods: Dict[str, int] = {}
        status_codes: Dict[str, int] = {}
        hosts: Dict[str, int] = {}
        errors = 0
        https = 0
        total_duration = 0.0

        for r in traffic:
            methods[r.method] = methods.get(r.method, 0) + 1
            if r.status_code:
                bucket = f"{r.status_code // 100}xx"
                status_codes[bucket] = status_codes.get(bucket, 0) + 1
            host = _host_of(r.remote_uri)
            hosts[host] = hosts.get(host, 0) + 1
            if r.error:
                errors += 1
            if r.is_https:
                https += 1
            total_duration += r.duration_ms

        return {
            "total_requests": total_requests,
            "total_bytes": total_bytes,
            "retained": len(traffic),
            "https_requests": https,
            "errors": errors,
            "methods": methods,
            "status_codes": status_codes,
            "top_hosts": dict(sorted(hosts.items(), key=lambda x: -x[1])[:10]),
            "avg_duration_ms": round(total_duration / len(traffic), 1) if traffic else 0,
        }

    def export_json(self, limit: Optional[int] = None, filter_term: Optional[str] = None) -> str:
        traffic = self.get_traffic(limit=limit, filter_term=filter_term)
        data = {
            "stats": self.get_stats(),
            "traffic": [r.to_dict() for r in traffic],
            "exported_at": time.time(),
        }
        return json.dumps(data, indent=2)


def _host_of(uri: str) -> str:
    rest = uri.split("://", 1)[-1]
    return rest.split("/", 1)[0]


# ── File Sink ────────────────────────────────────────────────────────────────

class JsonLinesTraceSink(TraceSink):
    """Appends each request as one JSON line."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lock = threading.Lock()

    def trace_proxy_request(self, request: ProxyRequest) -> None:
        line = json.dumps(request.to_dict())
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")


# ── Fan-Out ──────────────────────────────────────────────────────────────────

class CompositeTraceSink(TraceSink):
    """Forwards each record to every child sink; one failure does not stop the rest."""

    def __init__(self, sinks: Iterable[TraceSink]):
        self.sinks = list(sinks)

    def trace_proxy_request(self, request: ProxyRequest) -> None:
        for sink in self.sinks:
            try:
                sink.trace_proxy_request(request)
            except Exception as e:
                logger.error(f"{type(sink).__name__} failed for {request.remote_uri}: {e}")
