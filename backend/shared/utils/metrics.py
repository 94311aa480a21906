"""
Lightweight metrics collection for livescores.
Wraps prometheus_client with async-safe patterns.
"""
from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

from prometheus_client import Counter, Gauge, Histogram, start_http_server

from shared.config import get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)

# ── Counters ────────────────────────────────────────────────────────────
PROVIDER_REQUESTS = Counter(
    "ls_provider_requests_total",
    "Total provider HTTP requests",
    ["provider", "endpoint", "status"],
)
QUOTA_REFUSALS = Counter(
    "ls_quota_refusals_total",
    "Provider calls refused locally because the daily quota was spent",
    ["provider"],
)
BREAKER_TRIPS = Counter(
    "ls_breaker_trips_total",
    "Times the resilience controller opened, by reason",
    ["name", "reason"],
)
EVENTS_ACCEPTED = Counter(
    "ls_events_accepted_total",
    "Provider events accepted into a tick batch",
)
FANOUT_PUBLISHES = Counter(
    "ls_fanout_publishes_total",
    "Messages published to fanout topics",
    ["event"],
)
FANOUT_PRUNED = Counter(
    "ls_fanout_pruned_total",
    "Subscribers removed from fanout topics, by reason",
    ["reason"],
)

# ── Histograms ──────────────────────────────────────────────────────────
PROVIDER_LATENCY = Histogram(
    "ls_provider_latency_seconds",
    "Provider request latency in seconds",
    ["provider"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)
TICK_DURATION = Histogram(
    "ls_tick_duration_seconds",
    "Wall time of a single poll tick",
    ["tick"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

# ── Gauges ──────────────────────────────────────────────────────────────
BREAKER_OPEN = Gauge(
    "ls_breaker_open",
    "1 while the resilience controller short-circuits provider calls",
    ["name"],
)
LIVE_MATCHES = Gauge(
    "ls_live_matches",
    "Matches in the live key set after the last reconciliation",
)
BOARD_MATCHES = Gauge(
    "ls_board_matches",
    "Matches in the board key list after the last reconciliation",
)
FANOUT_SUBSCRIBERS = Gauge(
    "ls_fanout_subscribers_active",
    "Currently registered stream subscribers",
)


@asynccontextmanager
async def atrack_latency(histogram: Histogram, **labels: str) -> AsyncIterator[None]:
    """Async context manager to track operation latency."""
    start = time.perf_counter()
    try:
        yield
    finally:
        histogram.labels(**labels).observe(time.perf_counter() - start)


def start_metrics_server(port: int | None = None) -> None:
    """Start the Prometheus metrics HTTP server."""
    settings = get_settings()
    if not settings.metrics_enabled:
        return
    metrics_port = port or settings.metrics_port
    try:
        start_http_server(metrics_port)
        logger.info("metrics_server_started", port=metrics_port)
    except OSError as exc:
        logger.warning("metrics_server_failed", error=str(exc), port=metrics_port)
