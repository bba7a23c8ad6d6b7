"""Prometheus metrics for the payment API.

Tracks HTTP traffic plus one counter and one histogram per gateway charge so
provider rejections and slow providers show up without reading logs.
"""

import os

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
    multiprocess,
)

REGISTRY = CollectorRegistry()

# Set when uvicorn or gunicorn runs several workers
if os.environ.get("PROMETHEUS_MULTIPROC_DIR"):
    multiprocess.MultiProcessCollector(REGISTRY)


APP_INFO = Info(
    "storefront_payments_app",
    "Build version and deployment environment",
    registry=REGISTRY,
)


# ---- HTTP ----
HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Requests served, by route template and status code",
    ["method", "endpoint", "status_code"],
    registry=REGISTRY,
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "http_request_duration_seconds",
    "Time from request received to response sent",
    ["method", "endpoint"],
    buckets=[0.005, 0.025, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 15.0],
    registry=REGISTRY,
)

HTTP_REQUESTS_IN_PROGRESS = Gauge(
    "http_requests_in_progress",
    "Requests currently being served",
    ["method", "endpoint"],
    registry=REGISTRY,
)


# ---- Payments ----
GATEWAY_CHARGES_TOTAL = Counter(
    "payment_gateway_charges_total",
    "Transactions opened against a payment gateway",
    ["gateway", "outcome"],
    registry=REGISTRY,
)

GATEWAY_CHARGE_DURATION_SECONDS = Histogram(
    "payment_gateway_charge_duration_seconds",
    "Duration of outbound gateway charge calls",
    ["gateway"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
    registry=REGISTRY,
)

PAYMENTS_PROCESSED_TOTAL = Counter(
    "payments_processed_total",
    "Checkout payment requests handled by the processor",
    ["mode"],
    registry=REGISTRY,
)

WEBHOOK_NOTIFICATIONS_TOTAL = Counter(
    "payment_webhook_notifications_total",
    "Gateway notifications received",
    ["gateway", "result"],
    registry=REGISTRY,
)


def set_app_info(version: str, environment: str) -> None:
    APP_INFO.info({"version": version, "environment": environment})


def record_gateway_charge(gateway: str, success: bool, duration: float) -> None:
    """Record the outcome and duration of one gateway charge."""
    GATEWAY_CHARGES_TOTAL.labels(
        gateway=gateway, outcome="success" if success else "rejected"
    ).inc()
    GATEWAY_CHARGE_DURATION_SECONDS.labels(gateway=gateway).observe(duration)


def get_metrics() -> bytes:
    """Render the payment registry in Prometheus text format."""
    return generate_latest(REGISTRY)


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
