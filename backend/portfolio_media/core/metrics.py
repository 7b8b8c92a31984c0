"""Prometheus metrics for uploads and transcoding."""

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    Info,
    CollectorRegistry,
    generate_latest,
    CONTENT_TYPE_LATEST,
)

# Custom registry so tests and multiple apps do not collide with the default one
REGISTRY = CollectorRegistry()


# ============================================
# Application Info
# ============================================
APP_INFO = Info(
    "portfolio_media_app",
    "Application information",
    registry=REGISTRY,
)


# ============================================
# HTTP Metrics
# ============================================
HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
    registry=REGISTRY,
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0, 120.0, 600.0],
    registry=REGISTRY,
)


# ============================================
# Transcode Metrics
# ============================================
TRANSCODE_RUNS_TOTAL = Counter(
    "transcode_runs_total",
    "Total transcode pipeline runs by outcome",
    ["outcome"],
    registry=REGISTRY,
)

TRANSCODE_FAILURES_TOTAL = Counter(
    "transcode_failures_total",
    "Transcode failures by error kind",
    ["kind"],
    registry=REGISTRY,
)

TRANSCODE_DURATION_SECONDS = Histogram(
    "transcode_duration_seconds",
    "Wall-clock duration of a transcode run",
    buckets=[0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0],
    registry=REGISTRY,
)

TRANSCODE_OUTPUT_BYTES = Histogram(
    "transcode_output_bytes",
    "Size of transcoded artifacts in bytes",
    buckets=[1e5, 1e6, 5e6, 1e7, 5e7, 1e8, 2.5e8, 5e8],
    registry=REGISTRY,
)

TRANSCODES_IN_PROGRESS = Gauge(
    "transcodes_in_progress",
    "Number of transcode runs currently executing",
    registry=REGISTRY,
)


# ============================================
# Upload Metrics
# ============================================
UPLOADS_TOTAL = Counter(
    "uploads_total",
    "Total uploads by result",
    ["result"],
    registry=REGISTRY,
)


def get_metrics() -> bytes:
    """Render all metrics in Prometheus text format."""
    return generate_latest(REGISTRY)


def get_content_type() -> str:
    """Content type for the metrics endpoint."""
    return CONTENT_TYPE_LATEST


def set_app_info(version: str, environment: str) -> None:
    """Publish application version info."""
    APP_INFO.info({
        "version": version,
        "environment": environment,
    })
