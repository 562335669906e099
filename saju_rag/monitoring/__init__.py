"""
Monitoring module for observability.
"""

from saju_rag.monitoring.langsmith import (
    LangSmithTracer,
    MetricsCollector,
    get_tracer,
    get_metrics,
)

__all__ = [
    "LangSmithTracer",
    "MetricsCollector",
    "get_tracer",
    "get_metrics",
]
