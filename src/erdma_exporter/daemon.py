import contextlib
import json
import logging
import socket
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Dict, Optional, Tuple

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry

from .core import render_metrics

log = logging.getLogger("erdma-exporter")

DEFAULT_LISTEN_ADDRESS = ":9101"
DEFAULT_METRICS_PATH = "/metrics"

INDEX_PAGE = """<html>
<head><title>ERDMA Exporter</title></head>
<body>
<h1>ERDMA Exporter</h1>
<p><a href="{path}">Metrics</a></p>
</body>
</html>
"""


def parse_listen_address(address: str) -> Tuple[str, int]:
    """Split a "host:port" listen address; an empty host binds all interfaces.

    Raises:
        ValueError: if the port is missing or not a number
    """
    host, sep, port = address.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"invalid listen address {address!r}, expected [host]:port")
    return host.strip("[]"), int(port)


class ExporterHTTPServer(ThreadingHTTPServer):
    daemon_threads = True


class IPv6ExporterHTTPServer(ExporterHTTPServer):
    address_family = socket.AF_INET6


class DualStackExporterHTTPServer(IPv6ExporterHTTPServer):
    """Listens on "::" and accepts IPv4 clients as mapped addresses."""

    def server_bind(self):
        with contextlib.suppress(OSError):
            self.socket.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 0)
        super().server_bind()


def make_server(address: Tuple[str, int], handler) -> ThreadingHTTPServer:
    """Bind an HTTP server with the socket family the host calls for.

    An empty host listens on both IPv4 and IPv6, falling back to IPv4 only
    when the host has no IPv6 stack. A host containing ':' is an IPv6 literal.
    """
    host, port = address
    if not host:
        try:
            return DualStackExporterHTTPServer(("::", port), handler)
        except OSError as e:
            log.debug(f"IPv6 unavailable ({e}), listening on IPv4 only")
            return ExporterHTTPServer(("", port), handler)
    if ":" in host:
        return IPv6ExporterHTTPServer((host, port), handler)
    return ExporterHTTPServer((host, port), handler)


class ExporterDaemon:
    def __init__(self, registry: CollectorRegistry, config: Dict[str, Any]):
        self.registry = registry
        self.config = config
        self.metrics_path = config.get('metrics_path', DEFAULT_METRICS_PATH)
        self.httpd: Optional[ThreadingHTTPServer] = None

    def start(self):
        """Start the HTTP server and block until it is shut down."""
        listen_address = self.config.get('listen_address', DEFAULT_LISTEN_ADDRESS)
        httpd = make_server(parse_listen_address(listen_address), self._make_handler())
        self.httpd = httpd

        log.info(f"Starting ERDMA exporter on {listen_address}{self.metrics_path}")
        try:
            httpd.serve_forever()
        except KeyboardInterrupt:
            log.info("Shutting down...")
        finally:
            self.stop()

    def stop(self):
        """Stop the HTTP server."""
        if self.httpd:
            self.httpd.server_close()
            self.httpd = None

    def _make_handler(self):
        """Create a request handler with access to this daemon instance."""
        daemon = self

        class RequestHandler(BaseHTTPRequestHandler):
            def do_GET(self):
                path = self.path.split('?', 1)[0]
                if path == daemon.metrics_path:
                    self._handle_metrics()
                elif path == '/':
                    self._handle_index()
                elif path == '/healthz':
                    self._handle_healthz()
                else:
                    self._handle_not_found()

            def _set_headers(self, status_code=200, content_type="application/json"):
                self.send_response(status_code)
                self.send_header("Content-Type", content_type)
                self.send_header("Cache-Control", "no-store")
                self.end_headers()

            def _handle_metrics(self):
                try:
                    output = render_metrics(daemon.registry)
                except Exception as e:
                    log.error(f"Failed to collect metrics: {e}")
                    self._set_headers(500, content_type="text/plain")
                    self.wfile.write(f"error collecting metrics: {e}\n".encode('utf-8'))
                    return

                self._set_headers(content_type=CONTENT_TYPE_LATEST)
                self.wfile.write(output)

            def _handle_index(self):
                self._set_headers(content_type="text/html; charset=utf-8")
                self.wfile.write(INDEX_PAGE.format(path=daemon.metrics_path).encode('utf-8'))

            def _handle_healthz(self):
                self._set_headers(content_type="text/plain")
                self.wfile.write(b"ok\n")

            def _handle_not_found(self):
                self._set_headers(404)
                self.wfile.write(json.dumps({
                    "error": "Not found",
                    "endpoints": ["/", daemon.metrics_path, "/healthz"]
                }).encode('utf-8'))

            def log_message(self, fmt, *args):
                log.debug(f"{self.address_string()} - {fmt % args}")

        return RequestHandler
