"""
HTTP server for the metrics and health endpoints.
Runs in a daemon thread; every request gets its own thread so a slow
scrape never blocks a health probe.

Endpoints:
    GET /metrics  - Last published snapshot plus exporter self-metrics
    GET /healthz  - Liveness, static "Ok"
    GET /readyz   - Readiness, static "Ok"
"""
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Optional
from urllib.parse import urlsplit

from keyvault_exporter.common.logging_config import get_logger

logger = get_logger(__name__)

HEALTH_PATHS = ("/healthz", "/readyz")


class MetricsHTTPHandler(BaseHTTPRequestHandler):
    """HTTP request handler for metrics and health endpoints."""

    # Class-level reference to the MetricRegistry (set by MetricsHTTPServer)
    registry = None

    def do_GET(self):
        path = urlsplit(self.path).path

        if path == "/metrics":
            body, content_type = self.registry.render(self.headers.get("Accept"))
            self._send(200, body, content_type)

        elif path in HEALTH_PATHS:
            self._send(200, b"Ok", "text/plain; charset=utf-8")

        else:
            self._send(404, b"Not found", "text/plain; charset=utf-8")

    def _send(self, status_code: int, body: bytes, content_type: str):
        self.send_response(status_code)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):
        """Suppress default access logging; scrapes are too frequent."""
        pass


class MetricsHTTPServer:
    """
    Threaded HTTP server exposing a ``MetricRegistry``.

    Usage:
        server = MetricsHTTPServer(registry, port=8080)
        server.start()
        # ... run scheduler ...
        server.stop()
    """

    def __init__(self, registry, host: str = "0.0.0.0", port: int = 8080):
        self.registry = registry
        self.host = host
        self.port = port
        self._server: Optional[ThreadingHTTPServer] = None
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        """
        Bind and serve in a daemon thread.

        Raises:
            OSError: the address could not be bound
        """
        handler = type(
            "MetricsHandler",
            (MetricsHTTPHandler,),
            {"registry": self.registry}
        )

        try:
            self._server = ThreadingHTTPServer((self.host, self.port), handler)
        except OSError as e:
            logger.error(f"Failed to start HTTP server on {self.host}:{self.port}: {e}")
            raise

        self._server.daemon_threads = True
        self._thread = threading.Thread(
            target=self._server.serve_forever,
            name="http-server",
            daemon=True
        )
        self._thread.start()
        logger.info(f"HTTP server listening on {self.host}:{self.server_port}")
        logger.info("  /metrics - Metrics | /healthz - Liveness | /readyz - Readiness")

    def stop(self) -> None:
        if self._server:
            self._server.shutdown()
            self._server.server_close()
            self._server = None
            logger.info("HTTP server stopped")

    @property
    def server_port(self) -> int:
        """Bound port; differs from ``port`` when started with port 0."""
        if self._server is not None:
            return self._server.server_address[1]
        return self.port

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
