"""
Observability Module

- Prometheus-style process metrics
- Per-query retrieval log
"""

from src.observability.metrics import get_metrics_text, record_query
from src.observability.retrieval_log import RetrievalLog, format_entry

__all__ = ["RetrievalLog", "format_entry", "get_metrics_text", "record_query"]
