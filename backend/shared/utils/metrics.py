"""
Metrics collection for Flag Watch.
Wraps prometheus_client; counters are process-local and reset on restart.
"""
from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, start_http_server

from shared.utils.logging import get_logger

logger = get_logger(__name__)

# ── Counters ────────────────────────────────────────────────────────────
API_REQUESTS = Counter(
    "flagwatch_api_requests_total",
    "Total upstream API requests",
    ["endpoint", "status"],
)
RATE_LIMIT_WAITS = Counter(
    "flagwatch_rate_limit_waits_total",
    "Times a caller was suspended because the call budget was exhausted",
)
NOTIFICATIONS = Counter(
    "flagwatch_notifications_total",
    "Webhook notifications by kind and delivery outcome",
    ["kind", "outcome"],
)
SERVERS_SKIPPED = Counter(
    "flagwatch_servers_skipped_total",
    "Servers skipped in a pass because the call budget was exhausted",
)

# ── Histograms ──────────────────────────────────────────────────────────
API_LATENCY = Histogram(
    "flagwatch_api_latency_seconds",
    "Upstream API request latency in seconds",
    ["endpoint"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)
PASS_DURATION = Histogram(
    "flagwatch_pass_duration_seconds",
    "Duration of a full reconciliation pass",
    buckets=(1, 5, 15, 30, 60, 120, 300),
)

# ── Gauges ──────────────────────────────────────────────────────────────
FLAGGED_PLAYERS = Gauge(
    "flagwatch_flagged_players",
    "Players currently notified as flagged, per server slot",
    ["server"],
)


def start_metrics_server(port: int, enabled: bool = True) -> None:
    """Start the Prometheus metrics HTTP server."""
    if not enabled:
        return
    try:
        start_http_server(port)
        logger.info("metrics_server_started", port=port)
    except OSError as exc:
        logger.warning("metrics_server_failed", error=str(exc), port=port)
