from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status_code"],
)

REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "path"],
)

BOOKINGS_SUBMITTED = Counter(
    "bookings_submitted_total",
    "Medical check bookings accepted for review",
    ["visa_type"],
)

BOOKINGS_APPROVED = Counter(
    "bookings_approved_total",
    "Medical check bookings approved by staff",
)

STATUS_NOTIFICATIONS = Counter(
    "status_notifications_total",
    "Notifications surfaced to applicants waiting on a booking",
    ["kind"],
)


def render_metrics() -> tuple[bytes, str]:
    return generate_latest(), CONTENT_TYPE_LATEST
