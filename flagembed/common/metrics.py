"""Metrics collection for the embedding library.

Provides a thin convenience wrapper around ``prometheus_client`` so every
component records embedding, inference, cache, and download metrics with
consistent label sets.

Design notes
- Metrics and labels are predeclared to avoid cardinality explosions
- A single registry is kept per collector (can be injected for tests)
"""

import time
from functools import wraps
from typing import Any, Callable, Optional
from prometheus_client import Counter, Histogram, CollectorRegistry, generate_latest
import structlog

logger = structlog.get_logger("metrics")


class MetricsCollector:
    """Centralized metrics collection.

    Parameters
    - service_name: Logical name used for scoping/labels if desired
    - registry: Optional custom ``CollectorRegistry`` (e.g. for testing)
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry or CollectorRegistry()

        self.embedding_requests = Counter(
            'ml_embedding_requests_total',
            'Total embedding generation requests',
            ['model_name', 'task'],
            registry=self.registry
        )

        self.embedding_duration = Histogram(
            'ml_embedding_duration_seconds',
            'Embedding generation duration',
            ['model_name', 'task'],
            registry=self.registry
        )

        self.inference_requests = Counter(
            'ml_inference_requests_total',
            'Total forward passes executed, one per chunk',
            ['model_name'],
            registry=self.registry
        )

        self.inference_duration = Histogram(
            'ml_inference_duration_seconds',
            'Forward pass duration per chunk',
            ['model_name'],
            registry=self.registry
        )

        self.chunk_failures = Counter(
            'ml_chunk_failures_total',
            'Chunks whose pipeline raised an error',
            ['model_name'],
            registry=self.registry
        )

        self.cache_hits = Counter(
            'ml_cache_hits_total',
            'Total cache hits',
            ['cache_type'],
            registry=self.registry
        )

        self.cache_misses = Counter(
            'ml_cache_misses_total',
            'Total cache misses',
            ['cache_type'],
            registry=self.registry
        )

        self.downloaded_bytes = Counter(
            'ml_artifact_downloaded_bytes_total',
            'Bytes downloaded for model archives',
            ['model_name'],
            registry=self.registry
        )

    def record_embedding(self, model_name: str, task: str, duration: float) -> None:
        """Record embedding generation metrics.

        ``task`` is one of ``embed``, ``query``, ``passage``.
        """
        self.embedding_requests.labels(model_name=model_name, task=task).inc()
        self.embedding_duration.labels(model_name=model_name, task=task).observe(duration)

    def record_inference(self, model_name: str, duration: float) -> None:
        """Record one forward pass."""
        self.inference_requests.labels(model_name=model_name).inc()
        self.inference_duration.labels(model_name=model_name).observe(duration)

    def record_chunk_failure(self, model_name: str) -> None:
        self.chunk_failures.labels(model_name=model_name).inc()

    def record_cache_hit(self, cache_type: str) -> None:
        """Record cache hit."""
        self.cache_hits.labels(cache_type=cache_type).inc()

    def record_cache_miss(self, cache_type: str) -> None:
        """Record cache miss."""
        self.cache_misses.labels(cache_type=cache_type).inc()

    def record_download(self, model_name: str, num_bytes: int) -> None:
        self.downloaded_bytes.labels(model_name=model_name).inc(num_bytes)

    def get_metrics(self) -> str:
        """Get metrics in Prometheus exposition format for scraping."""
        return generate_latest(self.registry).decode('utf-8')


# Global metrics collector instance
_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector(service_name: str = "flagembed") -> MetricsCollector:
    """Get or create the metrics collector.

    Returns a process‑wide singleton to avoid duplicate collectors/labels.
    """
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector(service_name)
    return _metrics_collector


def measure_time(operation: str, **labels: Any) -> Callable:
    """Decorator to log function execution time.

    Example
    >>> @measure_time("resolve_artifact", cache="filesystem")
    ... def resolve(model):
    ...     ...
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            start_time = time.time()
            try:
                result = func(*args, **kwargs)
                duration = time.time() - start_time
                logger.info(
                    f"Operation {operation} completed",
                    operation=operation,
                    duration_ms=duration * 1000,
                    **labels
                )
                return result
            except Exception as e:
                duration = time.time() - start_time
                logger.error(
                    f"Operation {operation} failed",
                    operation=operation,
                    duration_ms=duration * 1000,
                    error=str(e),
                    **labels
                )
                raise
        return wrapper
    return decorator
