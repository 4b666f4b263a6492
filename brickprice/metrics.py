"""Prometheus metrics for the price tracker."""

from prometheus_client import Counter, Histogram, Info

app_info = Info("brickprice", "Brick price tracker application info")
app_info.info({"version": "0.1.0", "name": "brickprice"})

# Refresh metrics
price_refreshes_total = Counter(
    "price_refreshes_total",
    "Total number of price refresh attempts",
    ["retailer", "status"],
)

price_fetch_duration_seconds = Histogram(
    "price_fetch_duration_seconds",
    "Time spent fetching retailer pages",
    ["retailer"],
    buckets=[0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0],
)

price_history_entries_total = Counter(
    "price_history_entries_total",
    "Total number of price history entries appended",
    ["retailer"],
)

product_remaps_total = Counter(
    "product_remaps_total",
    "Total number of synthetic product ids remapped to set numbers",
    ["retailer"],
)

# Tracking metrics
outbound_clicks_total = Counter(
    "outbound_clicks_total",
    "Total number of tracked outbound clicks",
    ["retailer"],
)


def record_refresh(retailer: str, ok: bool):
    """Record the outcome of a single refresh."""
    price_refreshes_total.labels(retailer=retailer, status="ok" if ok else "failed").inc()


def record_fetch_duration(retailer: str, seconds: float):
    """Record how long a page fetch took."""
    price_fetch_duration_seconds.labels(retailer=retailer).observe(seconds)


def record_history_entry(retailer: str):
    """Record a history entry append."""
    price_history_entries_total.labels(retailer=retailer).inc()


def record_remap(retailer: str):
    """Record a product id remap."""
    product_remaps_total.labels(retailer=retailer).inc()


def record_outbound_click(retailer: str):
    """Record a tracked outbound click."""
    outbound_clicks_total.labels(retailer=retailer or "unknown").inc()
