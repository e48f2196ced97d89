"""
Prometheus metrics for the search engine.

Each engine owns its own CollectorRegistry, so several engines (or test
cases) can be built in one process without duplicate registration errors.
"""

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, Summary

from listing_search.models import SearchCriteria


LATENCY_BUCKETS = (0.01, 0.025, 0.05, 0.1, 0.15, 0.2, 0.3, 0.5, 1.0, 2.5)


class SearchMetrics:
    """Request, degradation, latency, and result-size instruments"""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()

        self.requests_total = Counter(
            "marketplace_search_requests_total",
            "Search and count requests",
            ["operation", "has_radius", "has_category", "has_filters"],
            registry=self.registry,
        )
        self.index_errors_total = Counter(
            "marketplace_search_index_errors_total",
            "Full-text index failures that fell back to the relational store",
            ["operation"],
            registry=self.registry,
        )
        self.duration_seconds = Histogram(
            "marketplace_search_duration_seconds",
            "End-to-end search and count latency",
            ["operation"],
            buckets=LATENCY_BUCKETS,
            registry=self.registry,
        )
        self.results_count = Summary(
            "marketplace_search_results_count",
            "Rows returned per search",
            registry=self.registry,
        )

    def record_request(self, criteria: SearchCriteria, operation: str) -> None:
        """Count one request, tagged by the kind of filtering it asks for."""
        self.requests_total.labels(
            operation=operation,
            has_radius=str(criteria.is_geographic_search()).lower(),
            has_category=str(criteria.category_id is not None).lower(),
            has_filters=str(criteria.has_filters()).lower(),
        ).inc()

    def record_degradation(self, operation: str) -> None:
        self.index_errors_total.labels(operation=operation).inc()

    def time(self, operation: str):
        """Context manager observing the duration of one call."""
        return self.duration_seconds.labels(operation=operation).time()

    def record_result_count(self, count: int) -> None:
        self.results_count.observe(count)
