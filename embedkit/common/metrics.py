"""Prometheus metrics for embedding calls.

A thin wrapper around ``prometheus_client`` so every embedding workload
records the same counters and histograms.

Design notes
- Label sets are fixed (provider, model, outcome) to bound cardinality
- Each collector owns its registry; tests can create as many as they like
- ``as_metrics_hook()`` plugs straight into ``EmbeddingOptions.on_metrics``
  and ``as_skip_hook()`` into ``EmbeddingOptions.on_skipped``
"""

from typing import TYPE_CHECKING, Callable, Optional

import structlog
from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

from ..resilience import CircuitBreaker, CircuitState

if TYPE_CHECKING:
    from ..embeddings.types import EmbeddingMetrics, EmbeddingSkipped

logger = structlog.get_logger("metrics")

_BREAKER_STATE_VALUES = {
    CircuitState.CLOSED: 0,
    CircuitState.HALF_OPEN: 1,
    CircuitState.OPEN: 2,
}


class MetricsCollector:
    """Embedding metrics registry.

    Parameters
    - service_name: Logical name of the workload, exposed as a label
    - registry: Optional custom ``CollectorRegistry``
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry or CollectorRegistry()

        self.embedding_requests = Counter(
            'embedkit_embedding_requests_total',
            'Total embedding pipeline calls',
            ['service', 'provider', 'model', 'outcome'],
            registry=self.registry
        )

        self.embedding_duration = Histogram(
            'embedkit_embedding_duration_seconds',
            'Embedding pipeline call duration',
            ['service', 'provider', 'model'],
            registry=self.registry
        )

        self.embedding_chunks = Counter(
            'embedkit_embedding_chunks_total',
            'Chunks sent to embedding providers',
            ['service', 'provider'],
            registry=self.registry
        )

        self.embedding_tokens = Counter(
            'embedkit_embedding_tokens_total',
            'Input tokens embedded',
            ['service', 'provider'],
            registry=self.registry
        )

        self.embedding_retries = Counter(
            'embedkit_embedding_retries_total',
            'Provider call retries',
            ['service', 'provider'],
            registry=self.registry
        )

        self.cache_hits = Counter(
            'embedkit_cache_hits_total',
            'Total embedding cache hits',
            ['service'],
            registry=self.registry
        )

        self.cache_misses = Counter(
            'embedkit_cache_misses_total',
            'Total embedding cache misses',
            ['service'],
            registry=self.registry
        )

        self.skipped = Counter(
            'embedkit_embedding_skipped_total',
            'Embedding calls that produced no vector',
            ['service', 'reason'],
            registry=self.registry
        )

        self.circuit_breaker_state = Gauge(
            'embedkit_circuit_breaker_state',
            'Circuit breaker state (0=closed, 1=half-open, 2=open)',
            ['service', 'breaker'],
            registry=self.registry
        )

    def record_embedding_metrics(self, metrics: "EmbeddingMetrics") -> None:
        """Record one successful pipeline call.

        latency is converted to seconds to match Prometheus histogram units.
        """
        model = metrics.model or "default"
        self.embedding_requests.labels(
            service=self.service_name,
            provider=metrics.provider,
            model=model,
            outcome="success",
        ).inc()
        self.embedding_duration.labels(
            service=self.service_name,
            provider=metrics.provider,
            model=model,
        ).observe(metrics.latency_ms / 1000)

        if metrics.cached:
            self.record_cache_hit()
            return

        self.record_cache_miss()
        self.embedding_chunks.labels(service=self.service_name, provider=metrics.provider).inc(metrics.chunks)
        self.embedding_tokens.labels(service=self.service_name, provider=metrics.provider).inc(metrics.input_tokens)
        if metrics.retries:
            self.embedding_retries.labels(service=self.service_name, provider=metrics.provider).inc(metrics.retries)

    def record_skipped(self, reason: str) -> None:
        """Record a skipped call. Use a short, stable reason to keep cardinality low."""
        self.skipped.labels(service=self.service_name, reason=reason).inc()

    def record_cache_hit(self) -> None:
        self.cache_hits.labels(service=self.service_name).inc()

    def record_cache_miss(self) -> None:
        self.cache_misses.labels(service=self.service_name).inc()

    def record_circuit_breaker(self, breaker: CircuitBreaker) -> None:
        """Export the current state of ``breaker``."""
        state = breaker.get_state()
        self.circuit_breaker_state.labels(service=self.service_name, breaker=breaker.name).set(
            _BREAKER_STATE_VALUES[state]
        )

    def as_metrics_hook(self) -> Callable[["EmbeddingMetrics"], None]:
        """Callback suitable for ``EmbeddingOptions.on_metrics``."""
        return self.record_embedding_metrics

    def as_skip_hook(self) -> Callable[[str, "EmbeddingSkipped"], None]:
        """Callback suitable for ``EmbeddingOptions.on_skipped``."""
        def record(code: str, result: "EmbeddingSkipped") -> None:
            self.record_skipped(code)

        return record

    def get_metrics(self) -> str:
        """Get metrics in Prometheus exposition format for scraping."""
        return generate_latest(self.registry).decode('utf-8')


_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector(service_name: str = "embedkit") -> MetricsCollector:
    """Get or create the process-wide collector."""
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector(service_name)
    return _metrics_collector
