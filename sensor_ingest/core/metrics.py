"""
Prometheus Metrics Server

Simple HTTP server that exposes /metrics, /health and /stats.
"""

import json
from http.server import HTTPServer, BaseHTTPRequestHandler
from threading import Thread
from typing import Callable, Optional

from prometheus_client import Counter, Gauge, Histogram, generate_latest, CONTENT_TYPE_LATEST

from sensor_ingest.core.logging import get_logger

logger = get_logger("core.metrics", labels={"component": "metrics"})


class _Handler(BaseHTTPRequestHandler):
    def do_GET(self):
        if self.path == "/metrics":
            self._send(200, CONTENT_TYPE_LATEST, generate_latest())
        elif self.path == "/health":
            healthy = self._is_healthy()
            self._send(200 if healthy else 503, "text/plain", b"OK" if healthy else b"UNAVAILABLE")
        elif self.path == "/stats" and self.server.stats_provider is not None:
            body = json.dumps(self.server.stats_provider().to_dict()).encode()
            self._send(200, "application/json", body)
        else:
            self.send_response(404)
            self.end_headers()

    def _is_healthy(self) -> bool:
        check = self.server.health_check
        if check is None:
            return True
        try:
            return bool(check())
        except Exception as e:
            logger.warning(f"Health check raised: {e}")
            return False

    def _send(self, status: int, content_type: str, body: bytes):
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, *args):
        pass


class Metrics:
    """Container for all application metrics."""

    # Persistence
    readings_processed = Counter(
        "sensor_ingest_readings_processed_total",
        "Readings persisted successfully"
    )

    readings_failed = Counter(
        "sensor_ingest_readings_failed_total",
        "Readings in chunks whose insert failed"
    )

    chunk_insert_seconds = Histogram(
        "sensor_ingest_chunk_insert_seconds",
        "Latency of one chunk insert"
    )

    batch_rate = Gauge(
        "sensor_ingest_batch_rate_per_second",
        "Throughput of the most recently handled batch"
    )

    # RabbitMQ
    deliveries = Counter(
        "sensor_ingest_deliveries_total",
        "Deliveries taken off the queue, by disposition",
        ["outcome"]
    )

    publishes = Counter(
        "sensor_ingest_publishes_total",
        "Published batches, by confirmation outcome",
        ["outcome"]
    )


# Global metrics instance
metrics = Metrics()


class MetricsServer:
    def __init__(
        self,
        port: int = 9090,
        health_check: Optional[Callable[[], bool]] = None,
        stats_provider: Optional[Callable] = None,
        host: str = "0.0.0.0",
    ):
        self.host = host
        self.port = port
        self.health_check = health_check
        self.stats_provider = stats_provider
        self._server = None
        self._thread = None

    def start(self):
        self._server = HTTPServer((self.host, self.port), _Handler)
        self._server.health_check = self.health_check
        self._server.stats_provider = self.stats_provider
        # port 0 binds an ephemeral port
        self.port = self._server.server_address[1]
        self._thread = Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()

    def stop(self):
        if self._server:
            self._server.shutdown()
            self._server.server_close()
