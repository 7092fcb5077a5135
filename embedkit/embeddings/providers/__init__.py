"""Embedding provider adapters.

``create_embedding_provider`` resolves a ``ProviderConfig`` to a provider:
HTTP configs get a fresh ``HttpEmbeddingProvider``; custom providers are used
as given.
"""

from ...common.errors import ConfigurationError
from ..types import EmbeddingProvider, ProviderConfig
from .base import (
    check_embeddings,
    extract_usage,
    get_default_model,
    get_provider_cache_key,
    validate_embed_response,
)
from .http import HttpEmbeddingProvider, create_http_embedding
from .presets import (
    LocalModelEmbeddingProvider,
    create_azure_embedding,
    create_cohere_embedding,
    create_huggingface_embedding,
    create_local_embedding,
    create_ollama_embedding,
    create_openai_embedding,
)


def create_embedding_provider(config: ProviderConfig) -> EmbeddingProvider:
    if config.type == "http":
        return create_http_embedding(config.http_config)
    if config.type == "custom":
        return config.provider
    raise ConfigurationError(f"Unknown embedding provider type: {config.type}")


__all__ = [
    "EmbeddingProvider",
    "HttpEmbeddingProvider",
    "LocalModelEmbeddingProvider",
    "check_embeddings",
    "create_azure_embedding",
    "create_cohere_embedding",
    "create_embedding_provider",
    "create_http_embedding",
    "create_huggingface_embedding",
    "create_local_embedding",
    "create_ollama_embedding",
    "create_openai_embedding",
    "extract_usage",
    "get_default_model",
    "get_provider_cache_key",
    "validate_embed_response",
]
