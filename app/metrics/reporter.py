"""
Metrics Reporter for API Responses

Transforms aggregated metrics into the MetricsResponse schema served by
the /metrics endpoint.
"""

from app.metrics.store import MetricsStore, get_metrics_store
from app.schemas.moderation import MetricsResponse


class MetricsReporter:
    """
    Generate metrics reports from aggregated data.

    Example:
        reporter = MetricsReporter()
        response = reporter.generate_report(pending_usage_increments=0)
    """

    def __init__(self, store: MetricsStore | None = None):
        """
        Args:
            store: MetricsStore instance to report from.
                   If None, uses the global singleton.
        """
        self._store = store or get_metrics_store()

    def generate_report(self, pending_usage_increments: int = 0) -> MetricsResponse:
        """
        Build a MetricsResponse from the current aggregates.

        Args:
            pending_usage_increments: Usage increments currently queued by the ledger

        Returns:
            MetricsResponse ready for API serialization
        """
        agg = self._store.get_aggregated()

        if agg.total_requests:
            avg_latency = agg.total_provider_latency_ms / agg.total_requests
            avg_score = agg.total_overall_score / agg.total_requests
        else:
            avg_latency = 0.0
            avg_score = 0.0

        return MetricsResponse(
            total_requests=agg.total_requests,
            requests_by_decision=agg.requests_by_decision,
            requests_by_model=agg.requests_by_model,
            avg_provider_latency_ms=round(avg_latency, 2),
            avg_overall_score=round(min(avg_score, 1.0), 4),
            pending_usage_increments=pending_usage_increments,
        )
