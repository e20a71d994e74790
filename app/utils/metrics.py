"""
Prometheus-based metrics for production monitoring.
Provides /metrics endpoint for scraping.
"""
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response


# Counters
purchases_total = Counter(
    "purchases_total",
    "Total purchase attempts by outcome",
    ["outcome"],  # success, InsufficientFunds, PaymentRejected, ...
)

access_grants_total = Counter(
    "access_grants_total",
    "Total access grants created",
    ["item_type"],  # content, template
)

wallet_requests_total = Counter(
    "wallet_requests_total",
    "Total wallet/payment provider requests",
    ["method", "status"],
)

draft_requests_total = Counter(
    "draft_requests_total",
    "Total draft generation requests",
    ["kind", "status"],
)

reconciled_transactions_total = Counter(
    "reconciled_transactions_total",
    "Transactions resolved by the reconciliation task",
    ["result"],  # completed, failed, abandoned, granted
)

circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open)",
    ["name"],
)

# Histograms
payment_submit_duration_seconds = Histogram(
    "payment_submit_duration_seconds",
    "Payment submission duration",
    buckets=[0.5, 1, 2, 5, 10, 30, 60],
)

wallet_request_duration_seconds = Histogram(
    "wallet_request_duration_seconds",
    "Wallet provider request duration",
    ["method"],
    buckets=[0.1, 0.5, 1, 2, 5, 10],
)

draft_request_duration_seconds = Histogram(
    "draft_request_duration_seconds",
    "Draft generation request duration",
    buckets=[1, 5, 10, 30, 60],
)

# Gauges
purchases_in_flight = Gauge(
    "purchases_in_flight",
    "Purchases currently between submission and resolution",
)


# Metrics endpoint router
router = APIRouter()


@router.get("/metrics")
def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint for scraping."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
