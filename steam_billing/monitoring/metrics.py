"""
Prometheus metrics for Steam billing monitoring.

Tracks:
- Steam API request counts, errors and latency
- Circuit breaker state
- Purchase operation outcomes
- Reconciliation tick duration and per-order upsert outcomes
"""
import time

from prometheus_client import Counter, Gauge, Histogram

# Steam API metrics
steam_api_requests_total = Counter(
    "steam_api_requests_total",
    "Total Steam API requests",
    ["operation", "status"],  # status: ok, failure, error
)

steam_api_errors_total = Counter(
    "steam_api_errors_total",
    "Total Steam API transport/HTTP errors",
    ["error_type"],  # transient, permanent
)

steam_api_duration_seconds = Histogram(
    "steam_api_duration_seconds",
    "Steam API call duration in seconds",
    ["operation"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

steam_circuit_breaker_state = Gauge(
    "steam_circuit_breaker_state",
    "Steam circuit breaker state (0=closed, 1=open, 2=half_open)",
)

# Purchase metrics
purchase_operations_total = Counter(
    "purchase_operations_total",
    "Total purchase lifecycle operations",
    ["operation", "outcome"],
)

purchase_currency_fallbacks_total = Counter(
    "purchase_currency_fallbacks_total",
    "Purchases priced in the default currency instead of the requested one",
    ["requested_currency"],
)

# Reconciliation metrics
reconciliation_ticks_total = Counter(
    "reconciliation_ticks_total",
    "Total reconciliation ticks",
    ["status"],  # completed, failed, skipped
)

reconciliation_orders_total = Counter(
    "reconciliation_orders_total",
    "Reported orders processed by reconciliation",
    ["outcome"],  # upserted, failed
)

reconciliation_duration_seconds = Histogram(
    "reconciliation_duration_seconds",
    "Reconciliation tick duration in seconds",
    buckets=(0.5, 1, 2.5, 5, 10, 30, 60, 120, 300),
)

reconciliation_last_run_timestamp = Gauge(
    "reconciliation_last_run_timestamp",
    "Timestamp of last completed reconciliation tick",
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_steam_api_call(
        operation: str, status: str, duration_seconds: float
    ) -> None:
        """Record Steam API call."""
        steam_api_requests_total.labels(operation=operation, status=status).inc()
        steam_api_duration_seconds.labels(operation=operation).observe(duration_seconds)

    @staticmethod
    def record_steam_api_error(error_type: str) -> None:
        """Record Steam API error."""
        steam_api_errors_total.labels(error_type=error_type).inc()

    @staticmethod
    def set_circuit_breaker_state(state: str) -> None:
        """Set circuit breaker state."""
        state_map = {"closed": 0, "open": 1, "half_open": 2}
        steam_circuit_breaker_state.set(state_map.get(state, 0))

    @staticmethod
    def record_purchase_operation(operation: str, outcome: str) -> None:
        """Record the outcome of a purchase operation."""
        purchase_operations_total.labels(operation=operation, outcome=outcome).inc()

    @staticmethod
    def record_currency_fallback(requested_currency: str) -> None:
        """Record a default-currency substitution."""
        purchase_currency_fallbacks_total.labels(requested_currency=requested_currency).inc()

    @staticmethod
    def record_reconciliation_tick(
        status: str, duration_seconds: float, upserted: int = 0, failed: int = 0
    ) -> None:
        """Record a reconciliation tick."""
        reconciliation_ticks_total.labels(status=status).inc()
        if status == "skipped":
            return
        reconciliation_duration_seconds.observe(duration_seconds)
        if upserted:
            reconciliation_orders_total.labels(outcome="upserted").inc(upserted)
        if failed:
            reconciliation_orders_total.labels(outcome="failed").inc(failed)
        if status == "completed":
            reconciliation_last_run_timestamp.set(time.time())


# Export singleton instance
metrics = MetricsCollector()
