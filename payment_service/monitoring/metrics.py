"""
Prometheus metrics for payment orchestration.

Tracks:
- Payment and refund outcomes by status and provider
- Payment processing duration and amounts
- Payment-method operations
- Provider API calls, errors and circuit breaker state
- Outbox queue depth and published events
- Consumed order events
"""
from prometheus_client import Counter, Gauge, Histogram

# Payment metrics
payment_requests_total = Counter(
    "payment_requests_total",
    "Total number of payment requests",
    ["status", "currency", "provider"],
)

payment_processing_duration_seconds = Histogram(
    "payment_processing_duration_seconds",
    "Payment processing duration in seconds",
    buckets=(0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0),
)

payment_amount_cents = Histogram(
    "payment_amount_cents",
    "Payment amounts in cents",
    buckets=(50, 100, 500, 1000, 5000, 10000, 50000, 100000, 500000, 1000000),
)

# Refund metrics
refund_requests_total = Counter(
    "refund_requests_total",
    "Total number of refund requests",
    ["status", "provider"],
)

# Payment-method metrics
payment_method_operations_total = Counter(
    "payment_method_operations_total",
    "Total payment-method save/delete operations",
    ["operation", "status"],  # operation: save, delete
)

# Provider API metrics
provider_api_requests_total = Counter(
    "provider_api_requests_total",
    "Total payment provider API requests",
    ["provider", "operation", "status"],
)

provider_api_errors_total = Counter(
    "provider_api_errors_total",
    "Total payment provider API errors",
    ["provider", "error_type"],  # transient, permanent, rate_limit
)

provider_api_duration_seconds = Histogram(
    "provider_api_duration_seconds",
    "Payment provider API call duration in seconds",
    ["provider", "operation"],
    buckets=(0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0),
)

# Circuit breaker metrics
provider_circuit_breaker_state = Gauge(
    "provider_circuit_breaker_state",
    "Provider circuit breaker state (0=closed, 1=open, 2=half_open)",
    ["provider"],
)

# Outbox metrics
outbox_queue_depth = Gauge(
    "outbox_queue_depth",
    "Number of unpublished events in outbox",
)

outbox_events_published_total = Counter(
    "outbox_events_published_total",
    "Total outbox events published",
    ["event_type"],
)

outbox_processing_duration_seconds = Histogram(
    "outbox_processing_duration_seconds",
    "Outbox batch processing duration in seconds",
    buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# Order event metrics
order_events_processed_total = Counter(
    "order_events_processed_total",
    "Total order events consumed",
    ["event_type", "status"],  # success, failed, ignored
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_payment_request(
        status: str, currency: str, provider: str, amount_cents: int = 0
    ) -> None:
        """Record a payment request."""
        payment_requests_total.labels(
            status=status, currency=currency, provider=provider
        ).inc()
        if amount_cents > 0:
            payment_amount_cents.observe(amount_cents)

    @staticmethod
    def record_payment_duration(duration_seconds: float) -> None:
        """Record payment processing duration."""
        payment_processing_duration_seconds.observe(duration_seconds)

    @staticmethod
    def record_refund_request(status: str, provider: str) -> None:
        refund_requests_total.labels(status=status, provider=provider).inc()

    @staticmethod
    def record_payment_method_operation(operation: str, status: str) -> None:
        payment_method_operations_total.labels(operation=operation, status=status).inc()

    @staticmethod
    def record_provider_call(
        provider: str, operation: str, status: str, duration_seconds: float
    ) -> None:
        """Record a provider API call."""
        provider_api_requests_total.labels(
            provider=provider, operation=operation, status=status
        ).inc()
        provider_api_duration_seconds.labels(
            provider=provider, operation=operation
        ).observe(duration_seconds)

    @staticmethod
    def record_provider_error(provider: str, error_type: str) -> None:
        """Record a classified provider API error."""
        provider_api_errors_total.labels(provider=provider, error_type=error_type).inc()

    @staticmethod
    def set_circuit_breaker_state(provider: str, state: str) -> None:
        """Set circuit breaker state."""
        state_map = {"closed": 0, "open": 1, "half_open": 2}
        provider_circuit_breaker_state.labels(provider=provider).set(
            state_map.get(state, 0)
        )

    @staticmethod
    def set_outbox_queue_depth(depth: int) -> None:
        """Set outbox queue depth."""
        outbox_queue_depth.set(depth)

    @staticmethod
    def record_outbox_event_published(event_type: str, duration_seconds: float) -> None:
        """Record outbox event published."""
        outbox_events_published_total.labels(event_type=event_type).inc()
        outbox_processing_duration_seconds.observe(duration_seconds)

    @staticmethod
    def record_order_event(event_type: str, status: str) -> None:
        order_events_processed_total.labels(event_type=event_type, status=status).inc()


# Export singleton instance
metrics = MetricsCollector()
