"""
Minimal HTTP server for liveness checks.
Serves GET /health on the configured port so platform healthchecks succeed.
Runs in a daemon thread.
"""
from __future__ import annotations

import json
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer

from shared.utils.logging import get_logger

logger = get_logger(__name__)


def start_health_server(service_name: str, port: int, host: str = "0.0.0.0") -> threading.Thread:
    """
    Start a daemon thread that listens on port and responds to GET /health.
    Any other GET on / returns a plain liveness line.
    """
    body = json.dumps({"status": "ok", "service": service_name}).encode("utf-8")
    banner = f"{service_name} is running".encode("utf-8")

    class Handler(BaseHTTPRequestHandler):
        def do_GET(self) -> None:
            if self.path in ("/health", "/health/"):
                self.send_response(200)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)
            elif self.path == "/":
                self.send_response(200)
                self.send_header("Content-Type", "text/plain")
                self.send_header("Content-Length", str(len(banner)))
                self.end_headers()
                self.wfile.write(banner)
            else:
                self.send_response(404)
                self.end_headers()

        def log_message(self, format: str, *args: object) -> None:
            pass  # Suppress request logging

    def serve() -> None:
        with HTTPServer((host, port), Handler) as httpd:
            httpd.serve_forever()

    t = threading.Thread(target=serve, name="health-server", daemon=True)
    t.start()
    logger.info("health_server_started", port=port, url=f"http://localhost:{port}")
    return t
