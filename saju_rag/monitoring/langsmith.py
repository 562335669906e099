"""
LangSmith tracing integration for observability.
"""

import logging
import os
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import uuid4

from saju_rag.config import settings

logger = logging.getLogger(__name__)


class LangSmithTracer:
    """LangSmith tracing wrapper."""

    def __init__(self):
        self.enabled = False
        self._client = None
        self._initialize()

    def _initialize(self):
        """Initialize LangSmith if configured."""
        if settings.LANGSMITH_API_KEY and settings.LANGCHAIN_TRACING_V2:
            os.environ["LANGCHAIN_TRACING_V2"] = "true"
            os.environ["LANGCHAIN_API_KEY"] = settings.LANGSMITH_API_KEY
            os.environ["LANGCHAIN_PROJECT"] = settings.LANGCHAIN_PROJECT
            os.environ["LANGCHAIN_ENDPOINT"] = settings.LANGCHAIN_ENDPOINT

            from langsmith import Client

            self._client = Client(api_key=settings.LANGSMITH_API_KEY, api_url=settings.LANGCHAIN_ENDPOINT)
            self.enabled = True
            logger.info(f"✅ LangSmith tracing enabled: {settings.LANGCHAIN_PROJECT}")
        else:
            logger.info("ℹ️ LangSmith tracing not configured")

    def trace_run(
        self,
        name: str,
        run_type: str = "chain",
        inputs: Dict[str, Any] = None,
        metadata: Dict[str, Any] = None,
    ):
        """
        Context manager for tracing a run.

        Usage:
            with tracer.trace_run("retrieve", inputs={"query": q}) as run:
                ...
                run.set_output(ids)
        """
        if not self.enabled:
            return _NoOpContextManager()
        return _TracingContextManager(
            client=self._client,
            name=name,
            run_type=run_type,
            inputs=inputs or {},
            metadata=metadata or {},
        )


class _NoOpContextManager:
    """No-op context manager when tracing is disabled."""

    def __enter__(self):
        return self

    def __exit__(self, *args):
        return False

    def set_output(self, output):
        pass


class _TracingContextManager:
    """Context manager for tracing runs. Tracing failures never fail the traced work."""

    def __init__(self, client, name, run_type, inputs, metadata):
        self.client = client
        self.name = name
        self.run_type = run_type
        self.inputs = inputs
        self.metadata = metadata
        self.run_id = None
        self.outputs: Optional[Dict[str, Any]] = None

    def __enter__(self):
        run_id = uuid4()
        try:
            self.client.create_run(
                id=run_id,
                name=self.name,
                run_type=self.run_type,
                inputs=self.inputs,
                project_name=settings.LANGCHAIN_PROJECT,
                start_time=datetime.now(timezone.utc),
                extra={"metadata": self.metadata},
            )
            self.run_id = run_id
        except Exception as e:
            logger.warning(f"⚠️ Failed to create trace run: {e}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.run_id:
            try:
                self.client.update_run(
                    self.run_id,
                    end_time=datetime.now(timezone.utc),
                    outputs=self.outputs,
                    error=str(exc_val) if exc_type else None,
                )
            except Exception as e:
                logger.warning(f"⚠️ Failed to close trace run: {e}")
        return False

    def set_output(self, output):
        self.outputs = {"output": output}


class MetricsCollector:
    """Collects and exposes in-process pipeline counters."""

    def __init__(self):
        self._lock = threading.Lock()
        self.metrics = {
            "requests_total": 0,
            "chat_requests": 0,
            "query_requests": 0,
            "generate_requests": 0,
            "cache_hits": 0,
            "cache_misses": 0,
            "embedding_failures": 0,
            "retrieval_failures": 0,
            "model_failures": 0,
            "fallbacks_used": 0,
            "empty_retrievals": 0,
            "history_save_failures": 0,
            "timeouts": 0,
            "documents_added": 0,
            "documents_deleted": 0,
            "fortune_parse_failures": 0,
        }

    def increment(self, metric: str, value: int = 1):
        """Increment a counter metric. Unknown names are ignored."""
        with self._lock:
            if metric in self.metrics:
                self.metrics[metric] += value

    def get_metrics(self) -> Dict[str, Any]:
        """Get all metrics."""
        with self._lock:
            snapshot = dict(self.metrics)
        lookups = snapshot["cache_hits"] + snapshot["cache_misses"]
        snapshot["cache_hit_rate"] = snapshot["cache_hits"] / lookups if lookups > 0 else 0.0
        return snapshot


# Singleton instances
_tracer: Optional[LangSmithTracer] = None
_metrics: Optional[MetricsCollector] = None


def get_tracer() -> LangSmithTracer:
    """Get singleton tracer."""
    global _tracer
    if _tracer is None:
        _tracer = LangSmithTracer()
    return _tracer


def get_metrics() -> MetricsCollector:
    """Get singleton metrics collector."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics
