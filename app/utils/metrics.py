"""
Prometheus-based metrics for production monitoring.
Provides /metrics endpoint for scraping.
"""
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response


# Counters
otp_issued_total = Counter(
    "otp_issued_total",
    "Total number of OTP challenges stored",
)

otp_rate_limited_total = Counter(
    "otp_rate_limited_total",
    "Total OTP issuances refused by the per-email limiter",
)

otp_verifications_total = Counter(
    "otp_verifications_total",
    "Total OTP verification attempts",
    ["result"],  # valid, invalid
)

email_send_total = Counter(
    "email_send_total",
    "Total outgoing emails",
    ["status"],  # success, error, refused
)

sign_in_total = Counter(
    "sign_in_total",
    "Total sign-in attempts by outcome",
    ["result"],  # success, bad_credentials, device_conflict, device_check_failed
)

device_bindings_total = Counter(
    "device_bindings_total",
    "Device binding events",
    ["event"],  # bound, reset
)

registrations_total = Counter(
    "registrations_total",
    "Registration steps completed",
    ["step"],  # otp_sent, verified, account_created
)

purchase_transitions_total = Counter(
    "purchase_transitions_total",
    "Purchase ledger writes",
    ["transition"],  # created, approved, rejected, deleted, duplicate
)

access_checks_total = Counter(
    "access_checks_total",
    "Access gate decisions",
    ["result"],  # allowed, denied
)

circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=half-open, 2=open)",
    ["name"],
)

# Histograms
email_send_duration_seconds = Histogram(
    "email_send_duration_seconds",
    "SMTP send duration",
    buckets=[0.1, 0.5, 1, 2, 5, 10],
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
