"""Common utilities shared across the embedding pipeline.

Includes:
- ``config``: Pydantic-based settings read from environment variables.
- ``logging``: structured logging setup with structlog.
- ``metrics``: Prometheus metrics for embedding calls and cache usage.
- ``errors``: the error taxonomy used by providers and the pipeline.

Import pattern:
- from embedkit.common.config import EmbeddingSettings
- from embedkit.common.logging import configure_logging
"""
