"""Prometheus metrics for the UPD loader.

Exposes key metrics for monitoring:
- Request counts by endpoint and status
- Request duration histograms
- UPD upload outcomes and processing time
- MoySklad API call counts and latency

Based on Prometheus best practices:
https://prometheus.io/docs/practices/naming/
"""

from prometheus_client import Counter, Histogram, generate_latest
from prometheus_client.openmetrics.exposition import CONTENT_TYPE_LATEST

# Request metrics
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# UPD processing metrics
upd_uploads_total = Counter(
    "upd_uploads_total",
    "Total UPD archives processed",
    ["status"],  # success, failed, rejected
)

upd_upload_size_bytes = Histogram(
    "upd_upload_size_bytes",
    "UPD archive size in bytes",
    buckets=(1024, 10240, 102400, 1048576, 10485760),  # 1KB to 10MB
)

upd_processing_duration_seconds = Histogram(
    "upd_processing_duration_seconds",
    "End-to-end UPD processing duration in seconds",
    buckets=(0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0),
)

# MoySklad API metrics
moysklad_requests_total = Counter(
    "moysklad_requests_total",
    "Total MoySklad API calls",
    ["method", "status"],  # HTTP status code, or "error" for network failures
)

moysklad_request_duration_seconds = Histogram(
    "moysklad_request_duration_seconds",
    "MoySklad API call duration in seconds",
    ["method"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)


def get_metrics() -> tuple[bytes, str]:
    """Generate Prometheus metrics in text format.

    Returns:
        Tuple of (metrics bytes, content type)
    """
    return generate_latest(), CONTENT_TYPE_LATEST
