"""
Prometheus metrics for storefront monitoring.

Tracks:
- HTTP requests per route template
- Checkout requests by outcome and their duration
- Authorization attempts per checkout and per-attempt outcomes
- Stock decrement anomalies
- Audit write failures
- Email notifications
- Tokenization outcomes
"""
from prometheus_client import Counter, Histogram

# HTTP metrics
http_requests_total = Counter(
    "http_requests_total",
    "HTTP requests by route template and status code",
    ["method", "route", "status_code"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "route"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# Checkout metrics
checkout_requests_total = Counter(
    "checkout_requests_total",
    "Total number of checkout requests",
    ["outcome"],  # approved, failed
)

checkout_duration_seconds = Histogram(
    "checkout_duration_seconds",
    "Checkout processing duration in seconds",
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

checkout_payment_attempts = Histogram(
    "checkout_payment_attempts",
    "Authorization attempts used per checkout",
    buckets=(1, 2, 3, 4, 5, 10),
)

payment_attempts_total = Counter(
    "payment_attempts_total",
    "Simulated authorization attempts",
    ["result"],  # approved, declined
)

# Inventory metrics
stock_decrement_anomalies_total = Counter(
    "stock_decrement_anomalies_total",
    "Stock decrements skipped because they would go negative or failed",
    ["reason"],  # negative_stock, product_missing, error
)

# Audit metrics
audit_write_failures_total = Counter(
    "audit_write_failures_total",
    "Audit events that could not be recorded",
    ["event_type"],
)

# Email metrics
email_notifications_total = Counter(
    "email_notifications_total",
    "Customer email notifications",
    ["kind", "status"],  # kind: payment_approved, payment_failed; status: sent, failed, skipped
)

# Tokenization metrics
tokenization_requests_total = Counter(
    "tokenization_requests_total",
    "Card tokenization requests",
    ["outcome"],  # created, rejected, invalid, generation_failed
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_http_request(
        method: str, route: str, status_code: int, duration_seconds: float
    ) -> None:
        """Record a served HTTP request under its route template."""
        http_requests_total.labels(method=method, route=route, status_code=str(status_code)).inc()
        http_request_duration_seconds.labels(method=method, route=route).observe(duration_seconds)

    @staticmethod
    def record_checkout(outcome: str, duration_seconds: float) -> None:
        """Record a finished checkout request."""
        checkout_requests_total.labels(outcome=outcome).inc()
        checkout_duration_seconds.observe(duration_seconds)

    @staticmethod
    def record_payment_attempt(approved: bool) -> None:
        """Record one simulated authorization attempt."""
        payment_attempts_total.labels(result="approved" if approved else "declined").inc()

    @staticmethod
    def record_checkout_attempts(attempts: int) -> None:
        """Record attempts used by a checkout that reached a terminal state."""
        checkout_payment_attempts.observe(attempts)

    @staticmethod
    def record_stock_anomaly(reason: str) -> None:
        """Record a skipped stock decrement."""
        stock_decrement_anomalies_total.labels(reason=reason).inc()

    @staticmethod
    def record_audit_failure(event_type: str) -> None:
        """Record an audit event that was dropped."""
        audit_write_failures_total.labels(event_type=event_type).inc()

    @staticmethod
    def record_email(kind: str, status: str) -> None:
        """Record an email notification outcome."""
        email_notifications_total.labels(kind=kind, status=status).inc()

    @staticmethod
    def record_tokenization(outcome: str) -> None:
        """Record a tokenization outcome."""
        tokenization_requests_total.labels(outcome=outcome).inc()


# Export singleton instance
metrics = MetricsCollector()
