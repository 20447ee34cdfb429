"""
Prometheus instruments shared by the engine, the metrics ingestion and the
response cache. Exposed by the application at /metrics.
"""

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

ANALYTICS_QUERY_TIME = Histogram(
    "invoice_analytics_query_seconds",
    "Time spent running the store queries of one analytics operation",
    ["operation"],
)

STORE_FAILURES = Counter(
    "invoice_analytics_store_failures_total",
    "Analytics operations aborted by a record store failure",
    ["operation"],
)

CACHE_LOOKUPS = Counter(
    "invoice_analytics_cache_lookups_total",
    "Analytics response cache lookups",
    ["result"],
)

SAMPLES_INGESTED = Counter(
    "invoice_analytics_samples_ingested_total",
    "Client performance samples accepted",
)

PERFORMANCE_SIGNALS = Counter(
    "invoice_analytics_performance_signals_total",
    "Performance signals raised by the anomaly detector",
    ["metric", "type"],
)


def render_latest() -> tuple:
    """Exposition payload and its content type"""
    return generate_latest(), CONTENT_TYPE_LATEST
