"""
Prometheus metrics for the availability/pricing caches, Guesty API calls,
booking sync and webhook ingestion.

Metrics are exposed via the /metrics endpoint for scraping by Prometheus.

Metric Types:
    - Counter: Cumulative metrics that only increase (e.g., total API requests)
    - Histogram: Observations bucketed by value (e.g., request latency)
    - Gauge: Point-in-time value that can go up or down (e.g., blocked dates)

Example:
    >>> from sync_guesty.metrics import availability_refresh_duration
    >>> with availability_refresh_duration.labels(property_key="kant").time():
    ...     cache.refresh_property("kant")
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# =============================================================================
# Guesty API Metrics
# =============================================================================

api_requests = Counter(
    "guesty_api_requests_total",
    "Total Guesty API requests made",
    ["endpoint", "status_code"],
)
"""
Counter for API requests to Guesty.

Labels:
    endpoint: Logical endpoint name (e.g., "calendar", "reservations")
    status_code: HTTP status code, or "error" for transport failures
"""

api_latency = Histogram(
    "guesty_api_latency_seconds",
    "Guesty API request latency in seconds",
    ["endpoint"],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, float("inf")),
)

# =============================================================================
# Token Cache Metrics
# =============================================================================

token_cache_hits = Counter(
    "guesty_token_cache_hits_total",
    "Total number of token cache hits",
    ["tier"],
)
"""Counter for token cache hits. tier is "memory" or "store"."""

token_cache_misses = Counter(
    "guesty_token_cache_misses_total",
    "Total number of token cache misses",
)

token_refreshes = Counter(
    "guesty_token_refreshes_total",
    "Total number of token issuance calls",
    ["status"],
)

# =============================================================================
# Availability Cache Metrics
# =============================================================================

availability_refreshes = Counter(
    "guesty_availability_refreshes_total",
    "Availability refreshes by property and outcome",
    ["property_key", "status"],
)

availability_refresh_duration = Histogram(
    "guesty_availability_refresh_duration_seconds",
    "Duration of a single-property availability refresh in seconds",
    ["property_key"],
    buckets=(0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, float("inf")),
)

blocked_dates = Gauge(
    "guesty_blocked_dates",
    "Blocked dates in the current availability snapshot",
    ["property_key"],
)

# =============================================================================
# Pricing Cache Metrics
# =============================================================================

pricing_cache_hits = Counter(
    "guesty_pricing_cache_hits_total",
    "Price quotes served from cache",
)

pricing_cache_misses = Counter(
    "guesty_pricing_cache_misses_total",
    "Price quotes computed live",
    ["source"],
)

# =============================================================================
# Booking Sync & Webhook Metrics
# =============================================================================

booking_syncs = Counter(
    "guesty_booking_syncs_total",
    "Booking sync attempts by outcome",
    ["status"],
)
"""
Counter for booking sync attempts.

Labels:
    status: synced, failed, skipped or disabled
"""

webhook_events = Counter(
    "guesty_webhook_events_total",
    "Inbound webhook events by source, type and processing status",
    ["source", "event_type", "status"],
)
