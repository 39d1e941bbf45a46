"""
Prometheus-based metrics for production monitoring.
Provides /metrics endpoint for scraping.
"""
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response


# Counters
orders_created_total = Counter(
    "orders_created_total",
    "Purchase intents handled by OrderService",
    ["kind", "outcome"],  # kind: order / payment_link; outcome: created / reused
)

payment_transitions_total = Counter(
    "payment_transitions_total",
    "Payment status transitions won by a conditional write",
    ["source", "status"],  # source: verify / webhook
)

webhook_events_total = Counter(
    "webhook_events_total",
    "Gateway webhook deliveries",
    ["event", "outcome"],
)

download_tokens_issued_total = Counter(
    "download_tokens_issued_total",
    "Download token issuance calls",
    ["outcome"],  # created / reused
)

download_tokens_consumed_total = Counter(
    "download_tokens_consumed_total",
    "Download token consumption attempts",
    ["outcome"],  # ok / rejected
)

gateway_requests_total = Counter(
    "gateway_requests_total",
    "Total payment gateway API requests",
    ["operation", "status"],
)

circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open)",
    ["name"],
)

# Histograms
gateway_request_duration_seconds = Histogram(
    "gateway_request_duration_seconds",
    "Payment gateway API request duration",
    ["operation"],
    buckets=[0.1, 0.25, 0.5, 1, 2, 5, 10],
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
