"""Prometheus metric definitions for the authorization service."""

from prometheus_client import Counter, Gauge, Histogram, generate_latest
from starlette.responses import Response


authorization_attempts_total = Counter(
    "authorization_attempts_total",
    "Total authorization attempts started",
    ["service", "variant"],
)
authorization_rejected_total = Counter(
    "authorization_rejected_total",
    "Attempts refused because one is already outstanding for the reference",
    ["service"],
)
authorization_outcomes_total = Counter(
    "authorization_outcomes_total",
    "Terminal authorization outcomes",
    ["service", "outcome", "reason"],
)
authorization_duration_seconds = Histogram(
    "authorization_duration_seconds",
    "Seconds from attempt start to terminal state",
    ["service", "outcome"],
)
gateway_requests_total = Counter(
    "gateway_requests_total",
    "Gateway calls by operation and result",
    ["service", "operation", "result"],
)
gateway_request_duration_seconds = Histogram(
    "gateway_request_duration_seconds",
    "Gateway call latency seconds",
    ["service", "operation"],
)
status_poll_checks_total = Counter(
    "status_poll_checks_total",
    "Status checks issued by the poller",
    ["service", "result"],
)
stale_responses_discarded_total = Counter(
    "stale_responses_discarded_total",
    "Gateway responses dropped because their attempt was no longer current",
    ["service"],
)
reconciliation_pending_total = Gauge(
    "reconciliation_pending_total",
    "Deposit bookkeeping writes waiting for reconciliation",
    ["service"],
)
reconciliation_attempts_total = Counter(
    "reconciliation_attempts_total",
    "Reconciliation retries by result",
    ["service", "result"],
)


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type="text/plain")
