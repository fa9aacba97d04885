# routes_metrics.py

"""Prometheus metrics and /metrics endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

# HTTP
http_requests_total = Counter(
    "http_requests_total", "Total HTTP requests", ["path", "method", "status"]
)
http_errors_total = Counter("http_errors_total", "Total HTTP errors", ["status"])
http_errors_total.labels(status="0").inc(0)
http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency by route template",
    ["path", "method"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

# Database
db_slow_queries_total = Counter(
    "db_slow_queries_total", "Statements slower than DB_SLOW_QUERY_MS", ["statement"]
)

# Orders
orders_created_total = Counter("orders_created_total", "Total orders created")
orders_created_total.inc(0)
orders_completed_total = Counter("orders_completed_total", "Total orders completed")
orders_completed_total.inc(0)
orders_cancelled_total = Counter("orders_cancelled_total", "Total orders cancelled")
orders_cancelled_total.inc(0)

# Inventory
stock_adjustments_total = Counter(
    "stock_adjustments_total", "Stock movements written", ["reference_type"]
)
insufficient_stock_total = Counter(
    "insufficient_stock_total", "Requests rejected for insufficient stock"
)
insufficient_stock_total.inc(0)
low_stock_alerts_total = Counter(
    "low_stock_alerts_total", "Low stock threshold crossings"
)
low_stock_alerts_total.inc(0)

# Events and real-time
event_handler_errors_total = Counter(
    "event_handler_errors_total", "Event bus handler failures", ["event"]
)
ws_clients = Gauge("ws_clients", "Connected WebSocket clients")
ws_messages_total = Counter("ws_messages_total", "Total WebSocket messages sent")
ws_messages_total.inc(0)
ws_send_failures_total = Counter(
    "ws_send_failures_total", "WebSocket sends dropped because the client was gone"
)
ws_send_failures_total.inc(0)

# Side channel
audit_write_failures_total = Counter(
    "audit_write_failures_total", "Audit records that could not be written"
)
audit_write_failures_total.inc(0)
integrity_checks_total = Counter(
    "integrity_checks_total", "Integrity check results", ["status"]
)
backups_total = Counter("backups_total", "Backups produced", ["kind", "result"])

router = APIRouter()


@router.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus metrics."""
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
