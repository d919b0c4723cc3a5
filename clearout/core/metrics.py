"""
Prometheus Metrics for Observability

Tracks detector stage latency and outcome, identify latency, and the
distribution of verdicts. A front end can expose `get_metrics()` for
Prometheus scraping.
"""

from typing import Optional

from prometheus_client import (
    Counter,
    Histogram,
    Info,
    generate_latest,
    CONTENT_TYPE_LATEST,
    REGISTRY
)

# =============================================================================
# Metrics Definitions
# =============================================================================

# Detector latency - per stage and outcome
detector_latency_seconds = Histogram(
    "identify_detector_latency_seconds",
    "Time spent in each detector stage",
    labelnames=["stage", "outcome"],
    buckets=[0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 0.8, 1.0, 2.0, 5.0]
)

# Detector outcomes: ok, timeout, error, disabled
detector_outcomes_total = Counter(
    "identify_detector_outcomes_total",
    "Detector stage outcomes",
    labelnames=["stage", "outcome"]
)

# Total identify duration
identify_latency_seconds = Histogram(
    "identify_latency_seconds",
    "Total time for one identify call",
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 2.5, 5.0, 10.0]
)

# Verdicts
identify_results_total = Counter(
    "identify_results_total",
    "Identify results by resolution level and next step",
    labelnames=["resolution_level", "next_step"]
)

identify_confidence_histogram = Histogram(
    "identify_confidence_score",
    "Distribution of calibrated confidence scores",
    buckets=[0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9, 1.0]
)

# Vision API calls
vision_api_calls_total = Counter(
    "identify_vision_api_calls_total",
    "Total number of live vision model calls",
    labelnames=["status", "http_status"]
)

# Application Info
app_info = Info(
    "clearout_identify",
    "Application information"
)


# =============================================================================
# Helper Functions
# =============================================================================

def set_app_info(version: str, environment: str):
    """Set application info metric."""
    app_info.info({
        "version": version,
        "environment": environment
    })


def record_detector_outcome(stage: str, outcome: str, latency_seconds: Optional[float] = None):
    """Record a detector outcome and, when it ran, its latency.

    Args:
        stage: Detector stage (barcode, ocr, vlm, clip)
        outcome: ok, timeout, error or disabled
        latency_seconds: Wall time spent waiting on the stage
    """
    detector_outcomes_total.labels(stage=stage, outcome=outcome).inc()
    if latency_seconds is not None:
        detector_latency_seconds.labels(stage=stage, outcome=outcome).observe(latency_seconds)


def record_identify_result(
    resolution_level: str,
    next_step: str,
    confidence: float,
    latency_seconds: float
):
    """Record one identify verdict."""
    identify_results_total.labels(
        resolution_level=resolution_level,
        next_step=next_step
    ).inc()
    identify_confidence_histogram.observe(confidence)
    identify_latency_seconds.observe(latency_seconds)


def record_vision_api_call(status: str, http_status: int = 0):
    """Record a live vision model call."""
    vision_api_calls_total.labels(
        status=status,
        http_status=str(http_status)
    ).inc()


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest(REGISTRY)


def get_metrics_content_type() -> str:
    """Get the content type for Prometheus metrics."""
    return CONTENT_TYPE_LATEST


# Initialize app info on module load
set_app_info(version="1.0.0", environment="development")
