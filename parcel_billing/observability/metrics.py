# ==== PROMETHEUS METRICS ==== #

"""
Prometheus metrics for the parcel billing engine.

This module declares the counters and histograms for fee computation,
invoice lifecycle, payments, invoice numbering, and computation anomalies,
and exposes them on a scrape endpoint.
"""

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse
from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    REGISTRY
)


# ==== FEE METRICS ==== #

fees_computed_total = Counter(
    "parcel_fees_computed_total",
    "Total fee breakdowns computed",
    ["currency"]
)

fee_amount = Histogram(
    "parcel_fee_amount",
    "Computed fee totals in rate table base currency",
    ["component"],
    buckets=[0, 500, 1000, 2500, 5000, 10000, 25000, 50000, 100000]
)


# ==== INVOICE METRICS ==== #

invoices_created_total = Counter(
    "parcel_invoices_created_total",
    "Total invoices created",
    ["currency"]
)

invoice_status_transitions_total = Counter(
    "parcel_invoice_status_transitions_total",
    "Invoice status transitions",
    ["from_status", "to_status"]
)

invoice_recompute_seconds = Histogram(
    "parcel_invoice_recompute_seconds",
    "Time spent recomputing invoice ledgers in seconds"
)

invoice_number_conflicts_total = Counter(
    "parcel_invoice_number_conflicts_total",
    "Invoice number uniqueness conflicts",
    ["outcome"]  # retried, exhausted
)


# ==== PAYMENT METRICS ==== #

payments_applied_total = Counter(
    "parcel_payments_applied_total",
    "Total payments applied to invoices",
    ["method", "currency"]
)

payments_rejected_total = Counter(
    "parcel_payments_rejected_total",
    "Total payments rejected",
    ["reason"]
)


# ==== COMPUTATION ANOMALIES ==== #

computation_anomalies_total = Counter(
    "parcel_computation_anomalies_total",
    "Arithmetic results coerced or clamped to a valid value",
    ["field", "kind"]  # kind: non_finite, negative, invalid, clamped
)


# ==== HTTP METRICS ==== #

http_request_duration_seconds = Histogram(
    "parcel_http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "route", "status_code"]
)


# ==== DATABASE METRICS ==== #

db_connections_active = Gauge(
    "parcel_db_connections_active",
    "Number of active database connections"
)


# System metrics
app_info = Gauge(
    "parcel_app_info",
    "Application information",
    ["version", "environment", "service_name"]
)


def init_metrics(app) -> None:
    """Initialize metrics collection.

    Args:
        app: FastAPI application instance
    """
    from parcel_billing.settings import settings
    app_info.labels(
        version="0.1.0",
        environment=settings.APP_ENV,
        service_name=settings.SERVICE_NAME
    ).set(1)


# Metrics router for Prometheus scraping
metrics_router = APIRouter()


@metrics_router.get("/metrics")
def get_metrics() -> PlainTextResponse:
    """Expose Prometheus metrics for scraping."""
    return PlainTextResponse(
        generate_latest(REGISTRY).decode("utf-8"),
        media_type="text/plain"
    )
