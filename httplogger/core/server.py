"""
HTTP Logger Proxy Server
========================
Connection acceptor: binds the listening socket, accepts clients on a
dedicated thread and dispatches each one to a fixed worker pool.

Admission is bounded by ``max_workers + backlog`` slots. When every slot is
taken the accept loop keeps retrying admission until one frees up, so no
connection is dropped for saturation. Shutdown stops accepting, waits a
bounded grace period for in-flight connections and then forces the rest
closed.
"""

from __future__ import annotations

import errno
import logging
import socket
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from httplogger.config import CA_DIR, TRACE_FILE, HttpLoggerConfig
from httplogger.core.certs import CertificateProvider, generate_root_authority, load_or_create_authority
from httplogger.core.handler import ConnectionHandler
from httplogger.core.sysproxy import SystemProxyConfigurator, get_system_proxy_configurator
from httplogger.core.trace import CompositeTraceSink, JsonLinesTraceSink, TraceSink, TrafficLog
from httplogger.core.upstream import UpstreamClient

logger = logging.getLogger(__name__)

DEFAULT_ADDRESS = "127.0.0.1"
DEFAULT_PORT = 8642
ACCEPT_POLL_INTERVAL = 0.5

# accept() failures that leave the listener usable
TRANSIENT_ACCEPT_ERRNOS = frozenset({
    errno.ECONNABORTED,
    errno.EMFILE,
    errno.ENFILE,
    errno.ENOBUFS,
    errno.ENOMEM,
})


@dataclass
class _Connection:
    """A dispatched client socket and the state needed to reclaim it."""
    conn: socket.socket
    shadow: socket.socket
    slots: threading.BoundedSemaphore
    future: Optional[Future] = None


class ProxyServer:
    """
    Intercepting HTTP/HTTPS proxy server.

    Start/stop the listener, dispatch connections to workers and report
    statistics. Thread-safe for concurrent connection handling.
    """

    def __init__(
        self,
        certificates: Optional[CertificateProvider],
        trace_sink: Optional[TraceSink] = None,
        address: str = DEFAULT_ADDRESS,
        port: int = DEFAULT_PORT,
        max_workers: int = 32,
        backlog: int = 64,
        shutdown_grace: float = 5.0,
        client_timeout: Optional[float] = None,
        upstream: Optional[UpstreamClient] = None,
        system_proxy: Optional[SystemProxyConfigurator] = None,
        traffic_log: Optional[TrafficLog] = None,
    ):
        self.handler = ConnectionHandler(certificates, trace_sink, upstream, client_timeout)
        self.certificates = certificates
        self.address = address
        self.port = port
        self.max_workers = max_workers
        self.backlog = backlog
        self.shutdown_grace = shutdown_grace
        self.system_proxy = system_proxy
        self.traffic_log = traffic_log
        self.is_running: bool = False
        self.system_proxy_enabled: bool = False

        self._listener: Optional[socket.socket] = None
        self._thread: Optional[threading.Thread] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._slots: Optional[threading.BoundedSemaphore] = None
        self._stopping = threading.Event()
        self._lock = threading.Lock()
        # id(conn) -> connection plus a dup of its socket, used to force it closed
        self._active: Dict[int, _Connection] = {}
        self._accepted = 0
        self._completed = 0
        self._untraced = 0
        self._forced = 0
        self._start_time: float = 0

    # ── Lifecycle ────────────────────────────────────────────────────────

    @property
    def is_serving(self) -> bool:
        """True while the proxy is running and its accept thread is alive."""
        return self.is_running and self._thread is not None and self._thread.is_alive()

    def start(self) -> Dict[str, Any]:
        """Bind the listener and start accepting connections.

        Returns:
            Status dict with address, port, result.
        """
        if self.is_running:
            return {"ok": False, "error": f"Proxy already running on {self.address}:{self.port}"}

        try:
            listener = socket.create_server((self.address, self.port), backlog=self.backlog)
        except OSError as e:
            return {"ok": False, "error": f"Cannot bind {self.address}:{self.port}: {e}"}

        listener.settimeout(ACCEPT_POLL_INTERVAL)
        self._listener = listener
        self.port = listener.getsockname()[1]
        self._stopping.clear()
        self._slots = threading.BoundedSemaphore(self.max_workers + self.backlog)
        self._executor = ThreadPoolExecutor(
            max_workers=self.max_workers,
            thread_name_prefix="httplogger-worker",
        )
        self._thread = threading.Thread(
            target=self._accept_loop,
            args=(listener,),
            daemon=True,
            name=f"httplogger-accept-{self.port}",
        )
        self._thread.start()
        self.is_running = True
        self._start_time = time.time()
        logger.info(f"Proxy server listening at {self.address}:{self.port}")

        if self.system_proxy is not None:
            self.system_proxy_enabled = self.system_proxy.set_proxy(True, self.address, self.port)
            if not self.system_proxy_enabled:
                logger.warning(
                    "Unable to set the system proxy. Configure clients to use "
                    f"{self.address}:{self.port} manually."
                )

        return {
            "ok": True,
            "address": self.address,
            "port": self.port,
            "message": f"Proxy listening on {self.address}:{self.port}",
            "curl_example": f"curl -x http://{self.address}:{self.port} http://example.com",
            "system_proxy": self.system_proxy_enabled,
        }

    def stop(self) -> Dict[str, Any]:
        """Stop accepting, drain in-flight connections, clear the system proxy.

        Returns:
            Status dict with connection stats.
        """
        if not self.is_running:
            return {"ok": False, "error": "Proxy is not running"}

        self._stopping.set()

        if self.system_proxy is not None and self.system_proxy_enabled:
            self.system_proxy.set_proxy(False, self.address, self.port)
            self.system_proxy_enabled = False

        if self._listener is not None:
            self._listener.close()
        if self._thread is not None:
            self._thread.join(timeout=ACCEPT_POLL_INTERVAL * 4)

        self._drain(self.shutdown_grace)

        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
        self._close_cancelled()

        self.is_running = False
        uptime = time.time() - self._start_time

        stats = self.get_stats()
        stats["ok"] = True
        stats["uptime_seconds"] = round(uptime, 1)
        stats["message"] = "Proxy stopped"
        logger.info("Proxy server stopped")
        return stats

    def _drain(self, grace: float) -> None:
        """Wait up to *grace* seconds for in-flight connections, then force them closed."""
        deadline = time.monotonic() + grace
        while time.monotonic() < deadline:
            with self._lock:
                if not self._active:
                    return
            time.sleep(0.05)

        with self._lock:
            remaining = list(self._active.values())
            self._forced += len(remaining)
        if remaining:
            logger.warning(f"Forcing {len(remaining)} in-flight connection(s) closed")
        for entry in remaining:
            try:
                entry.shadow.shutdown(socket.SHUT_RDWR)
            except OSError:
                # Already closed by its handler
                pass

    def _close_cancelled(self) -> None:
        """Close connections still queued when the worker pool was shut down.

        Their handler never runs, so nothing else would release them.
        """
        with self._lock:
            keys = [
                key for key, entry in self._active.items()
                if entry.future is not None and entry.future.cancelled()
            ]
            cancelled = [self._active.pop(key) for key in keys]
            self._completed += len(cancelled)
            self._untraced += len(cancelled)
        if cancelled:
            logger.warning(f"Closing {len(cancelled)} queued connection(s) that never reached a worker")
        for entry in cancelled:
            entry.conn.close()
            entry.shadow.close()
            entry.slots.release()

    # ── Accept Loop ──────────────────────────────────────────────────────

    def _accept_loop(self, listener: socket.socket) -> None:
        while not self._stopping.is_set():
            try:
                conn, client_address = listener.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if self._stopping.is_set():
                    logger.warning(f"Accept loop stopped by shutdown: {e}")
                    break
                if e.errno in TRANSIENT_ACCEPT_ERRNOS:
                    logger.warning(f"Transient accept error: {e}")
                    if e.errno != errno.ECONNABORTED:
                        # Out of descriptors or buffers: give handlers time to free some
                        self._stopping.wait(ACCEPT_POLL_INTERVAL)
                    continue
                logger.error(f"Listener socket error, no longer accepting connections: {e}")
                break

            try:
                self._dispatch(conn, client_address)
            except Exception as e:
                logger.exception(f"Error dispatching connection from {client_address}: {e}")
                conn.close()

    def _dispatch(self, conn: socket.socket, client_address: Tuple) -> None:
        slots = self._slots
        # Saturated: retry admission until a worker slot frees up
        while not slots.acquire(timeout=ACCEPT_POLL_INTERVAL):
            if self._stopping.is_set():
                conn.close()
                return
            logger.debug("Worker pool saturated; waiting for a free slot")

        entry = _Connection(conn, conn.dup(), slots)
        with self._lock:
            self._accepted += 1
            self._active[id(conn)] = entry
        try:
            entry.future = self._executor.submit(self._run_handler, conn, client_address)
        except RuntimeError:
            self._finish(conn, traced=True)
            raise

    def _run_handler(self, conn: socket.socket, client_address: Tuple) -> None:
        traced = None
        try:
            traced = self.handler.handle(conn, client_address)
        finally:
            self._finish(conn, traced=traced is not None)

    def _finish(self, conn: socket.socket, traced: bool) -> None:
        with self._lock:
            entry = self._active.pop(id(conn), None)
            if entry is None:
                return
            self._completed += 1
            if not traced:
                self._untraced += 1
        entry.shadow.close()
        entry.slots.release()

    # ── Statistics ───────────────────────────────────────────────────────

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            stats: Dict[str, Any] = {
                "is_running": self.is_running,
                "address": self.address,
                "port": self.port if self.is_running else None,
                "accepted": self._accepted,
                "completed": self._completed,
                "active": len(self._active),
                "untraced": self._untraced,
                "forced_closed": self._forced,
                "system_proxy": self.system_proxy_enabled,
            }
        if self.traffic_log is not None:
            stats["traffic"] = self.traffic_log.get_stats()
        return stats


# ── Factory ──────────────────────────────────────────────────────────────────

def create_proxy_server(config: HttpLoggerConfig) -> ProxyServer:
    """Wire a ``ProxyServer`` from configuration."""
    if config.certs.persist_authority:
        authority = load_or_create_authority(CA_DIR, key_size=config.certs.key_size)
    else:
        authority = generate_root_authority(config.certs.key_size)

    certificates = CertificateProvider(
        authority,
        leaf_days=config.certs.leaf_days,
        key_size=config.certs.key_size,
        cache_leaf_certificates=config.certs.cache_leaf_certificates,
    )

    traffic_log = TrafficLog(max_entries=config.trace.max_entries)
    sinks: list = [traffic_log]
    if config.trace.file:
        sinks.append(JsonLinesTraceSink(config.trace.path or TRACE_FILE))

    return ProxyServer(
        certificates,
        trace_sink=CompositeTraceSink(sinks),
        address=config.proxy.address,
        port=config.proxy.port,
        max_workers=config.proxy.max_workers,
        backlog=config.proxy.backlog,
        shutdown_grace=config.proxy.shutdown_grace,
        client_timeout=config.proxy.client_timeout,
        upstream=UpstreamClient(timeout=config.upstream.timeout, verify_tls=config.upstream.verify_tls),
        system_proxy=get_system_proxy_configurator() if config.proxy.system_proxy else None,
        traffic_log=traffic_log,
    )
