"""Environment-driven settings for embedding workloads.

Builds on ``pydantic_settings.BaseSettings`` so every knob can come from an
environment variable, a ``.env`` file or the default below. The settings
object only holds plain values; the ``to_*`` helpers turn them into the
frozen config objects the pipeline consumes.

Usage
- ``settings = get_settings()``
- ``options = EmbeddingOptions(provider=..., resilience=settings.to_resilience_config())``
"""

from functools import lru_cache
from typing import TYPE_CHECKING, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..resilience import CircuitBreakerConfig, RateLimitConfig, ResilienceConfig, RetryConfig

if TYPE_CHECKING:
    from ..embeddings.cache import EmbeddingCache
    from ..embeddings.types import ChunkingConfig, SafetyConfig


class EmbeddingSettings(BaseSettings):
    """Settings shared by every embedding call in a process.

    Parameters are read from ``EMBED_*`` environment variables
    (case-insensitive).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    embed_env: str = Field(default="local")

    # Logging
    embed_log_level: str = Field(default="INFO")
    embed_log_format: str = Field(default="json")

    # Provider
    embed_model: Optional[str] = Field(default=None)
    embed_dimensions: Optional[int] = Field(default=None)

    # Chunking
    embed_chunk_size: int = Field(default=500, ge=1)
    embed_chunk_overlap: int = Field(default=50, ge=0)
    embed_max_input_length: int = Field(default=100000, ge=1)

    # Safety
    embed_min_text_length: int = Field(default=10, ge=0)
    embed_max_tokens: int = Field(default=8192, ge=1)
    embed_redact_pii: bool = Field(default=False)

    # Resilience
    embed_max_attempts: int = Field(default=3, ge=1)
    embed_backoff_ms: float = Field(default=1000, ge=0)
    embed_backoff_multiplier: float = Field(default=2.0, ge=1)
    embed_failure_threshold: int = Field(default=5, ge=1)
    embed_reset_timeout_ms: float = Field(default=30000, gt=0)
    embed_requests_per_minute: Optional[float] = Field(default=None, gt=0)
    embed_burst_seconds: float = Field(default=10.0, gt=0)
    embed_timeout_ms: float = Field(default=30000, gt=0)
    embed_concurrency: int = Field(default=1, ge=1)

    # Cache
    embed_cache_ttl_ms: float = Field(default=3600000, gt=0)
    embed_cache_max_entries: int = Field(default=1000, ge=1)
    embed_cache_key_salt: Optional[str] = Field(default=None)
    embed_redis_url: Optional[str] = Field(default=None)

    def to_resilience_config(self) -> ResilienceConfig:
        rate_limit = None
        if self.embed_requests_per_minute is not None:
            rate_limit = RateLimitConfig(
                requests_per_minute=self.embed_requests_per_minute,
                burst_seconds=self.embed_burst_seconds,
            )
        return ResilienceConfig(
            retry=RetryConfig(
                max_attempts=self.embed_max_attempts,
                backoff_ms=self.embed_backoff_ms,
                backoff_multiplier=self.embed_backoff_multiplier,
            ),
            circuit_breaker=CircuitBreakerConfig(
                failure_threshold=self.embed_failure_threshold,
                reset_timeout_ms=self.embed_reset_timeout_ms,
            ),
            rate_limit=rate_limit,
            timeout_ms=self.embed_timeout_ms,
            concurrency=self.embed_concurrency,
        )

    def to_chunking_config(self) -> "ChunkingConfig":
        from ..embeddings.types import ChunkingConfig

        return ChunkingConfig(
            size=self.embed_chunk_size,
            overlap=self.embed_chunk_overlap,
            max_input_length=self.embed_max_input_length,
        )

    def to_safety_config(self) -> "SafetyConfig":
        from ..embeddings.types import PiiRedactionConfig, SafetyConfig

        return SafetyConfig(
            pii_redaction=PiiRedactionConfig.all() if self.embed_redact_pii else None,
            min_text_length=self.embed_min_text_length,
            max_tokens=self.embed_max_tokens,
        )

    def build_cache(self) -> "EmbeddingCache":
        """Redis cache when ``EMBED_REDIS_URL`` is set, otherwise in-memory."""
        from ..embeddings.cache import InMemoryEmbeddingCache, RedisEmbeddingCache

        if self.embed_redis_url:
            return RedisEmbeddingCache(redis_url=self.embed_redis_url, ttl_ms=self.embed_cache_ttl_ms)
        return InMemoryEmbeddingCache(
            max_entries=self.embed_cache_max_entries,
            ttl_ms=self.embed_cache_ttl_ms,
        )


@lru_cache()
def get_settings() -> EmbeddingSettings:
    """Process-wide settings, read once."""
    return EmbeddingSettings()
