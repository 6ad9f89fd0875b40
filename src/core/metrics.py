"""
Prometheus metrics.

HTTP request metrics plus lifecycle counters: bids submitted and accepted,
accept conflicts by reason, job and escrow transitions, notification
outcomes and the live session gauge. Served on /metrics.
"""
import time

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, Info, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response as StarletteResponse

from src.core.config import settings

# === Application Info ===
APP_INFO = Info("sparkbid_app", "Sparkbid application info")
APP_INFO.info({
    "version": settings.app_version,
    "environment": settings.environment,
})

# === Request Metrics ===
REQUEST_COUNT = Counter(
    "sparkbid_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

REQUEST_LATENCY = Histogram(
    "sparkbid_http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

# === Lifecycle Metrics ===
BIDS_SUBMITTED = Counter(
    "sparkbid_bids_submitted_total",
    "Total bids submitted",
    ["category"],
)

BIDS_ACCEPTED = Counter(
    "sparkbid_bids_accepted_total",
    "Total bids accepted",
)

ACCEPT_CONFLICTS = Counter(
    "sparkbid_accept_conflicts_total",
    "Accept attempts that lost against an earlier decision",
    ["reason"],
)

JOB_TRANSITIONS = Counter(
    "sparkbid_job_transitions_total",
    "Job status transitions",
    ["from_status", "to_status"],
)

ESCROW_TRANSITIONS = Counter(
    "sparkbid_escrow_transitions_total",
    "Escrow status transitions",
    ["to_status"],
)

NOTIFICATIONS_DELIVERED = Counter(
    "sparkbid_notifications_total",
    "Notification delivery attempts",
    ["event_type", "transport", "outcome"],
)

LIVE_SESSIONS = Gauge(
    "sparkbid_live_sessions",
    "Connected realtime sessions",
)


REQUESTS_IN_FLIGHT = Gauge(
    "sparkbid_http_requests_in_flight",
    "HTTP requests being served",
)


class MetricsMiddleware(BaseHTTPMiddleware):
    """Counts and times every API request, labelled by route template."""

    async def dispatch(self, request: Request, call_next) -> StarletteResponse:
        if request.url.path == "/metrics":
            return await call_next(request)

        started = time.perf_counter()
        status_code = 500
        REQUESTS_IN_FLIGHT.inc()
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            REQUESTS_IN_FLIGHT.dec()
            # Route template keeps job and bid ids out of the label set
            route = request.scope.get("route")
            endpoint = getattr(route, "path", "unmatched")
            REQUEST_COUNT.labels(method=request.method, endpoint=endpoint, status_code=status_code).inc()
            REQUEST_LATENCY.labels(method=request.method, endpoint=endpoint).observe(time.perf_counter() - started)


# === Metrics Router ===
router = APIRouter(tags=["Health"])


@router.get("/metrics", include_in_schema=False)
async def metrics():
    """Prometheus scrape target."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )


# === Recorders used by the lifecycle services ===

def record_job_transition(from_status: str, to_status: str) -> None:
    JOB_TRANSITIONS.labels(from_status=from_status, to_status=to_status).inc()


def record_escrow_transition(to_status: str) -> None:
    ESCROW_TRANSITIONS.labels(to_status=to_status).inc()


def record_accept_conflict(reason: str) -> None:
    ACCEPT_CONFLICTS.labels(reason=reason).inc()


def record_notification(event_type: str, transport: str, outcome: str) -> None:
    NOTIFICATIONS_DELIVERED.labels(
        event_type=event_type,
        transport=transport,
        outcome=outcome,
    ).inc()
