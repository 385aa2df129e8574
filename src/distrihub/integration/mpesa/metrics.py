"""
Prometheus metrics for the M-Pesa payment gateway.

Mirrors the in-process UsageMetrics so that dashboards can scrape outcomes,
rejections and latency per provider operation.
"""

from __future__ import annotations

from typing import cast

from prometheus_client import REGISTRY, Counter, Gauge, Histogram

# Module-level cache to prevent duplicate registration
_metrics_cache: dict[str, Counter | Gauge | Histogram] = {}


def _find_registered(name: str) -> Counter | Gauge | Histogram | None:
    for collector in list(REGISTRY._collector_to_names.keys()):
        if hasattr(collector, "_name") and collector._name == name:
            return cast(Counter, collector)
    return None


def _get_or_create_counter(name: str, description: str, labelnames: list[str] | None = None) -> Counter:
    """Get existing counter or create new one, handling duplicates."""
    if name in _metrics_cache:
        return cast(Counter, _metrics_cache[name])

    try:
        counter = Counter(name, description, labelnames or [])
    except ValueError:
        # Metric already exists in registry, find and cache it
        existing = _find_registered(name)
        if existing is None:
            raise
        counter = cast(Counter, existing)

    _metrics_cache[name] = counter
    return counter


def _get_or_create_gauge(name: str, description: str) -> Gauge:
    """Get existing gauge or create new one, handling duplicates."""
    if name in _metrics_cache:
        return cast(Gauge, _metrics_cache[name])

    try:
        gauge = Gauge(name, description)
    except ValueError:
        existing = _find_registered(name)
        if existing is None:
            raise
        gauge = cast(Gauge, existing)

    _metrics_cache[name] = gauge
    return gauge


def _get_or_create_histogram(
    name: str, description: str, labelnames: list[str], buckets: list[float]
) -> Histogram:
    """Get existing histogram or create new one, handling duplicates."""
    if name in _metrics_cache:
        return cast(Histogram, _metrics_cache[name])

    try:
        histogram = Histogram(name, description, labelnames, buckets=buckets)
    except ValueError:
        existing = _find_registered(name)
        if existing is None:
            raise
        histogram = cast(Histogram, existing)

    _metrics_cache[name] = histogram
    return histogram


mpesa_requests_total = _get_or_create_counter(
    "distrihub_mpesa_requests_total",
    "Guarded M-Pesa operations by terminal outcome",
    ["operation", "outcome"],  # outcome: success, failure
)

mpesa_rejections_total = _get_or_create_counter(
    "distrihub_mpesa_rejections_total",
    "M-Pesa operations rejected before calling the provider",
    ["operation", "reason"],  # reason: circuit_open, rate_limited, validation
)

mpesa_request_duration_seconds = _get_or_create_histogram(
    "distrihub_mpesa_request_duration_seconds",
    "Duration of guarded M-Pesa operations including retries",
    ["operation"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0],
)

mpesa_circuit_breaker_open = _get_or_create_gauge(
    "distrihub_mpesa_circuit_breaker_open",
    "1 while the M-Pesa circuit breaker is open, as of the last guarded call",
)


def record_outcome(operation: str, success: bool, duration_seconds: float) -> None:
    """Record the terminal outcome of a guarded operation."""
    outcome = "success" if success else "failure"
    mpesa_requests_total.labels(operation=operation, outcome=outcome).inc()
    mpesa_request_duration_seconds.labels(operation=operation).observe(duration_seconds)


def record_rejection(operation: str, reason: str) -> None:
    mpesa_rejections_total.labels(operation=operation, reason=reason).inc()


def set_circuit_open(is_open: bool) -> None:
    mpesa_circuit_breaker_open.set(1 if is_open else 0)
