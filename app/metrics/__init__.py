"""
Metrics Module: In-process request statistics

Components:
    MetricsStore: Thread-safe in-memory metrics aggregation
    RequestMetric: Individual request metric record
    AggregatedMetrics: Snapshot of the aggregates
    MetricsReporter: Generate MetricsResponse for the /metrics endpoint

Usage:
    from app.metrics import get_metrics_store, RequestMetric

    store = get_metrics_store()
    store.record(RequestMetric(
        timestamp=time.time(),
        org_id=tenant.id,
        model_key="english-basic",
        provider="unitary",
        decision="flag",
        overall_score=0.91,
        provider_latency_ms=120.0,
    ))

    from app.metrics import MetricsReporter
    response = MetricsReporter().generate_report()

Singleton Access:
    get_metrics_store(): Returns global MetricsStore instance
"""

from app.metrics.store import (
    AggregatedMetrics,
    MetricsStore,
    RequestMetric,
    get_metrics_store,
)
from app.metrics.reporter import MetricsReporter


__all__ = [
    "AggregatedMetrics",
    "MetricsStore",
    "RequestMetric",
    "get_metrics_store",
    "MetricsReporter",
]
