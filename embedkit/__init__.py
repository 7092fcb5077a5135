"""embedkit: resilient, provider-agnostic text embedding pipeline.

Subpackages:
- ``embedkit.common``: configuration, structured logging, metrics, and errors.
- ``embedkit.resilience``: retry, circuit breaker, rate limiter, semaphore,
  and timeout primitives shared by every outbound call.
- ``embedkit.transport``: SSRF-safe URL validation and the resilient HTTP client.
- ``embedkit.embeddings``: redaction, chunking, aggregation, caching,
  provider adapters, and the pipeline orchestrator.

Usage:
- from embedkit.embeddings import embed, EmbeddingOptions, ProviderConfig
"""

__version__ = "0.1.0"
