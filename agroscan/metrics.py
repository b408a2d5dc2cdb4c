# agroscan/metrics.py
"""
Prometheus metrics and /metrics endpoint.
"""

from fastapi import APIRouter, Response
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST

router = APIRouter()

# Images accepted by /api/images/upload
IMAGES_UPLOADED = Counter(
    "agroscan_images_uploaded_total",
    "Total number of images accepted for analysis",
)

# Analyses dispatched but not yet terminal
ANALYSES_IN_FLIGHT = Gauge(
    "agroscan_analyses_in_flight",
    "Number of image analyses currently pending or processing",
)

# Wall time per analysis, model call included
ANALYSIS_SECONDS = Histogram(
    "agroscan_analysis_seconds",
    "Time spent analysing one image in seconds",
    buckets=(1, 2.5, 5, 10, 20, 30, 60, 120, 300),
)

# Terminal outcomes
ANALYSES_FINISHED = Counter(
    "agroscan_analyses_finished_total",
    "Total number of analyses by terminal status",
    ["status"],  # completed, failed
)

# Model replies without a parseable JSON object
MODEL_OUTPUT_FALLBACKS = Counter(
    "agroscan_model_output_fallbacks_total",
    "Total number of model replies that fell back to the placeholder analysis",
)


@router.get("/metrics")
def metrics() -> Response:
    """
    Expose Prometheus metrics in text format.
    """
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
