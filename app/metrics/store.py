"""
Metrics Store for Request Tracking

Aggregates per-request metrics of successful moderations for the /metrics
endpoint. Storage is in-memory and per-process; it is never consulted for
quota or billing, which live in the database.

The store is thread-safe using threading.Lock to handle
concurrent requests in FastAPI's async environment.
"""

import threading
from collections import defaultdict
from dataclasses import dataclass, field


@dataclass
class RequestMetric:
    """
    Individual request metric record.

    Attributes:
        timestamp: Unix timestamp when the request completed
        org_id: Tenant that made the request
        model_key: Model key used (e.g., 'english-basic')
        provider: Provider identifier (e.g., 'unitary')
        decision: Final decision ('allow', 'flag', 'block')
        overall_score: Normalized overall score (0.0-1.0)
        provider_latency_ms: Time spent in the classification backend
    """

    timestamp: float
    org_id: str
    model_key: str
    provider: str
    decision: str
    overall_score: float
    provider_latency_ms: float


@dataclass
class AggregatedMetrics:
    """
    Aggregated metrics snapshot for reporting.

    All fields are copies captured at a specific moment.
    """

    total_requests: int = 0
    total_overall_score: float = 0.0
    total_provider_latency_ms: float = 0.0
    requests_by_decision: dict[str, int] = field(default_factory=dict)
    requests_by_model: dict[str, int] = field(default_factory=dict)


class MetricsStore:
    """
    Thread-safe in-memory metrics storage.

    Example:
        store = MetricsStore()
        store.record(RequestMetric(
            timestamp=time.time(),
            org_id="org_1",
            model_key="english-basic",
            provider="unitary",
            decision="flag",
            overall_score=0.91,
            provider_latency_ms=120.0,
        ))
        aggregated = store.get_aggregated()
    """

    def __init__(self):
        self._lock = threading.Lock()

        self._total_requests: int = 0
        self._total_overall_score: float = 0.0
        self._total_provider_latency_ms: float = 0.0
        self._by_decision: dict[str, int] = defaultdict(int)
        self._by_model: dict[str, int] = defaultdict(int)

    def record(self, metric: RequestMetric) -> None:
        with self._lock:
            self._total_requests += 1
            self._total_overall_score += metric.overall_score
            self._total_provider_latency_ms += metric.provider_latency_ms
            self._by_decision[metric.decision] += 1
            self._by_model[metric.model_key] += 1

    def get_aggregated(self) -> AggregatedMetrics:
        """Snapshot of the current aggregates, safe to use outside the lock."""
        with self._lock:
            return AggregatedMetrics(
                total_requests=self._total_requests,
                total_overall_score=self._total_overall_score,
                total_provider_latency_ms=self._total_provider_latency_ms,
                requests_by_decision=dict(self._by_decision),
                requests_by_model=dict(self._by_model),
            )

    def reset(self) -> None:
        """Clear all stored data. Primarily used for testing."""
        with self._lock:
            self._total_requests = 0
            self._total_overall_score = 0.0
            self._total_provider_latency_ms = 0.0
            self._by_decision.clear()
            self._by_model.clear()


_store: MetricsStore | None = None


def get_metrics_store() -> MetricsStore:
    """
    Get the global metrics store instance.

    Returns:
        Singleton MetricsStore instance
    """
    global _store
    if _store is None:
        _store = MetricsStore()
    return _store
