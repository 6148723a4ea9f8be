"""
Prometheus Metrics Registry

Provides Prometheus-compatible metrics for:
- HTTP request counts and latencies
- Content processing outcomes and face matching calls
- Recipient graph grants (created vs. duplicates absorbed)
- Feed materialization (upserts, dead letters)
- Retroactive matching progress
- System resource usage (CPU, memory)
"""
import re
import time
import logging
from typing import Optional
from prometheus_client import (
    Counter, Histogram, Gauge, Info,
    CollectorRegistry, generate_latest, CONTENT_TYPE_LATEST
)
import psutil

logger = logging.getLogger(__name__)

# Custom registry so tests can import the module repeatedly
REGISTRY = CollectorRegistry()

app_info = Info(
    'app',
    'Application information',
    registry=REGISTRY
)

# ============================================================================
# HTTP Request Metrics
# ============================================================================

http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'path', 'status_code'],
    registry=REGISTRY
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'path'],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=REGISTRY
)

# ============================================================================
# Content Processing / Face Matching
# ============================================================================

content_processed_total = Counter(
    'content_processed_total',
    'Content items run through access decisions',
    ['status'],  # completed, failed
    registry=REGISTRY
)

content_processing_duration_seconds = Histogram(
    'content_processing_duration_seconds',
    'Time to process one uploaded content item',
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
    registry=REGISTRY
)

face_matching_calls_total = Counter(
    'face_matching_calls_total',
    'Calls to the face matching collaborator',
    ['operation', 'status'],  # detect/match/enroll, success/error
    registry=REGISTRY
)

faces_detected_total = Counter(
    'faces_detected_total',
    'Faces detected in uploaded content',
    ['outcome'],  # owner, friend, conflict, redelivered, known_resolved, known_unknown, new_unknown
    registry=REGISTRY
)

# ============================================================================
# Recipient Graph
# ============================================================================

recipient_edges_created_total = Counter(
    'recipient_edges_created_total',
    'Recipient edges created',
    ['method', 'provenance'],
    registry=REGISTRY
)

recipient_edges_duplicate_total = Counter(
    'recipient_edges_duplicate_total',
    'Grant attempts absorbed by the (content, recipient, method) key',
    ['method'],
    registry=REGISTRY
)

data_integrity_anomalies_total = Counter(
    'data_integrity_anomalies_total',
    'Rejected invariant violations',
    ['kind'],
    registry=REGISTRY
)

# ============================================================================
# Feed Materializer
# ============================================================================

feed_entries_upserted_total = Counter(
    'feed_entries_upserted_total',
    'Feed entry upserts applied',
    ['result'],  # inserted, updated, unchanged, skipped
    registry=REGISTRY
)

feed_dead_letters_total = Counter(
    'feed_dead_letters_total',
    'Change records shunted to the dead-letter table',
    registry=REGISTRY
)

feed_batch_splits_total = Counter(
    'feed_batch_splits_total',
    'Change-feed batches bisected after failure',
    registry=REGISTRY
)

change_feed_lag = Gauge(
    'change_feed_lag',
    'Change records not yet consumed by the feed materializer',
    registry=REGISTRY
)

# ============================================================================
# Retroactive Matching
# ============================================================================

retroactive_identities_resolved_total = Counter(
    'retroactive_identities_resolved_total',
    'Unknown face identities resolved after a friendship was accepted',
    registry=REGISTRY
)

retroactive_jobs_total = Counter(
    'retroactive_jobs_total',
    'Retroactive matching jobs finished',
    ['status'],
    registry=REGISTRY
)

# ============================================================================
# System Resource Metrics
# ============================================================================

system_cpu_usage_percent = Gauge(
    'system_cpu_usage_percent',
    'System CPU usage percentage',
    registry=REGISTRY
)

system_memory_usage_percent = Gauge(
    'system_memory_usage_percent',
    'System memory usage percentage',
    registry=REGISTRY
)

_start_time: Optional[float] = None

app_uptime_seconds = Gauge(
    'app_uptime_seconds',
    'Application uptime in seconds',
    registry=REGISTRY
)

# ============================================================================
# Helper Functions
# ============================================================================


def init_metrics(version: str = "1.0.0"):
    """
    Initialize metrics with application info.

    Args:
        version: Application version string
    """
    global _start_time
    _start_time = time.time()

    app_info.info({
        'version': version,
        'name': 'access-graph'
    })

    logger.info("Prometheus metrics initialized", extra={"version": version})


def record_request_metrics(
    method: str,
    path: str,
    status_code: int,
    response_time_seconds: float
):
    """Record HTTP request metrics."""
    normalized_path = _normalize_path(path)

    http_requests_total.labels(
        method=method,
        path=normalized_path,
        status_code=str(status_code)
    ).inc()

    http_request_duration_seconds.labels(
        method=method,
        path=normalized_path
    ).observe(response_time_seconds)


def record_content_processed(status: str, processing_time_seconds: float):
    """
    Record the outcome of processing one content item.

    Args:
        status: completed or failed
        processing_time_seconds: Total processing time
    """
    content_processed_total.labels(status=status).inc()
    content_processing_duration_seconds.observe(processing_time_seconds)


def record_face_matching_call(operation: str, status: str):
    face_matching_calls_total.labels(operation=operation, status=status).inc()


def record_face_outcome(outcome: str):
    faces_detected_total.labels(outcome=outcome).inc()


def record_grant(method: str, provenance: str, created: bool):
    """
    Record a grant attempt on the recipient graph.

    Args:
        method: FACE_MATCH, SHARED_EVENT or MANUAL
        provenance: REALTIME or RETROACTIVE
        created: False when the idempotency key absorbed the attempt
    """
    if created:
        recipient_edges_created_total.labels(method=method, provenance=provenance).inc()
    else:
        recipient_edges_duplicate_total.labels(method=method).inc()


def record_integrity_anomaly(kind: str):
    data_integrity_anomalies_total.labels(kind=kind).inc()


def record_feed_upsert(result: str):
    feed_entries_upserted_total.labels(result=result).inc()


def record_dead_letter():
    feed_dead_letters_total.inc()


def record_batch_split():
    feed_batch_splits_total.inc()


def update_change_feed_lag(pending: int):
    change_feed_lag.set(pending)


def record_retroactive_resolution(count: int = 1):
    retroactive_identities_resolved_total.inc(count)


def record_retroactive_job(status: str):
    retroactive_jobs_total.labels(status=status).inc()


def update_system_metrics():
    """
    Update system resource metrics (CPU, memory).

    Called before each scrape.
    """
    try:
        system_cpu_usage_percent.set(psutil.cpu_percent(interval=None))
        system_memory_usage_percent.set(psutil.virtual_memory().percent)

        if _start_time:
            app_uptime_seconds.set(time.time() - _start_time)

    except Exception as e:
        logger.warning(f"Failed to update system metrics: {e}")


def get_metrics() -> bytes:
    """
    Generate Prometheus metrics output.

    Returns:
        Prometheus text format metrics
    """
    update_system_metrics()
    return generate_latest(REGISTRY)


def get_content_type() -> str:
    """Get the content type for Prometheus metrics."""
    return CONTENT_TYPE_LATEST


def _normalize_path(path: str) -> str:
    """
    Normalize request path to avoid high cardinality.

    Replaces UUIDs and numeric IDs with placeholders.
    """
    path = re.sub(
        r'[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}',
        '{id}',
        path,
        flags=re.IGNORECASE
    )

    path = re.sub(r'/\d+', '/{id}', path)

    return path
