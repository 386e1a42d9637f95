"""
Prometheus Metrics for the TB guideline retrieval service

Tracks:
- queries_total / queries_successful / queries_failed: query counters
- query_latency_seconds: latency histogram buckets and percentiles
- results_returned_total: chunks returned across all queries
- table_enrichment_failures_total: table attachments that failed to render
- queries_by_scope: resolved scope per query
"""

import logging
import threading

logger = logging.getLogger(__name__)

# Thread-safe metrics storage
_lock = threading.Lock()

_metrics: dict[str, float] = {
    "queries_total": 0,
    "queries_successful": 0,
    "queries_failed": 0,
    "results_returned_total": 0,
    "table_enrichment_failures_total": 0,
}

_latencies: list[float] = []
_scopes: dict[str, int] = {}


def record_query(
    latency_ms: float,
    success: bool = True,
    scope: str | None = None,
    results: int = 0,
) -> None:
    """Record metrics for a processed query."""
    with _lock:
        _metrics["queries_total"] += 1
        if success:
            _metrics["queries_successful"] += 1
        else:
            _metrics["queries_failed"] += 1
        _metrics["results_returned_total"] += results
        scope_label = scope or "none"
        _scopes[scope_label] = _scopes.get(scope_label, 0) + 1
        _latencies.append(latency_ms)


def record_table_failure() -> None:
    with _lock:
        _metrics["table_enrichment_failures_total"] += 1


def get_metrics_text() -> str:
    """Generate Prometheus-compatible metrics text."""
    with _lock:
        sorted_latencies = sorted(_latencies) if _latencies else [0]
        p50 = _percentile(sorted_latencies, 50)
        p95 = _percentile(sorted_latencies, 95)
        p99 = _percentile(sorted_latencies, 99)

        lines = [
            "# HELP queries_total Total number of queries processed",
            "# TYPE queries_total counter",
            f'queries_total {int(_metrics["queries_total"])}',
            "",
            "# HELP queries_successful Total successful queries",
            "# TYPE queries_successful counter",
            f'queries_successful {int(_metrics["queries_successful"])}',
            "",
            "# HELP queries_failed Total failed queries",
            "# TYPE queries_failed counter",
            f'queries_failed {int(_metrics["queries_failed"])}',
            "",
            "# HELP results_returned_total Chunks returned across all queries",
            "# TYPE results_returned_total counter",
            f'results_returned_total {int(_metrics["results_returned_total"])}',
            "",
            "# HELP table_enrichment_failures_total Table attachments that failed to load or render",
            "# TYPE table_enrichment_failures_total counter",
            f'table_enrichment_failures_total {int(_metrics["table_enrichment_failures_total"])}',
            "",
            "# HELP queries_by_scope Queries per resolved scope",
            "# TYPE queries_by_scope counter",
        ]
        lines.extend(
            f'queries_by_scope{{scope="{scope}"}} {count}'
            for scope, count in sorted(_scopes.items())
        )
        lines.extend(
            [
                "",
                "# HELP query_latency_seconds Query response time histogram",
                "# TYPE query_latency_seconds histogram",
                f'query_latency_seconds{{le="0.5"}} {_count_below(sorted_latencies, 500)}',
                f'query_latency_seconds{{le="1.0"}} {_count_below(sorted_latencies, 1000)}',
                f'query_latency_seconds{{le="2.0"}} {_count_below(sorted_latencies, 2000)}',
                f'query_latency_seconds{{le="5.0"}} {_count_below(sorted_latencies, 5000)}',
                f"query_latency_seconds_p50 {p50 / 1000:.4f}",
                f"query_latency_seconds_p95 {p95 / 1000:.4f}",
                f"query_latency_seconds_p99 {p99 / 1000:.4f}",
            ]
        )

        return "\n".join(lines) + "\n"


def reset_metrics() -> None:
    """Reset all metrics to zero."""
    with _lock:
        for key in _metrics:
            _metrics[key] = 0
        _latencies.clear()
        _scopes.clear()


def _percentile(sorted_data: list[float], percentile: int) -> float:
    """Compute the given percentile from sorted data."""
    if not sorted_data:
        return 0.0
    idx = int(len(sorted_data) * percentile / 100)
    idx = min(idx, len(sorted_data) - 1)
    return sorted_data[idx]


def _count_below(sorted_data: list[float], threshold_ms: float) -> int:
    """Count values below threshold in sorted data."""
    count = 0
    for v in sorted_data:
        if v <= threshold_ms:
            count += 1
        else:
            break
    return count
