"""Text embedding pipeline.

Typical use::

    options = EmbeddingOptions(provider=ProviderConfig.custom(create_openai_embedding()))
    result = await generate_embeddings(record, options)
    if result.status == "success":
        ...
"""

from .aggregation import (
    aggregate_vectors,
    cosine_similarity,
    dot_product,
    euclidean_distance,
    get_dimensions,
    normalize_vector,
)
from .cache import (
    CacheKeyParams,
    EmbeddingCache,
    InMemoryEmbeddingCache,
    NoOpEmbeddingCache,
    RedisEmbeddingCache,
    generate_cache_key,
    generate_checksum,
    get_default_cache,
    reset_default_cache,
    validate_cached_result,
)
from .chunking import chunk_text, estimate_tokens, get_chunking_stats, needs_chunking
from .input import preview_input, select_input, validate_input
from .pipeline import (
    apply_max_tokens_to_chunking,
    embed,
    embed_from_record,
    generate_embeddings,
    get_effective_model,
)
from .providers import (
    HttpEmbeddingProvider,
    LocalModelEmbeddingProvider,
    create_azure_embedding,
    create_cohere_embedding,
    create_embedding_provider,
    create_http_embedding,
    create_huggingface_embedding,
    create_local_embedding,
    create_ollama_embedding,
    create_openai_embedding,
    validate_embed_response,
)
from .safety import contains_pii, create_pii_redactor, redact, redact_pii
from .types import (
    CacheConfig,
    ChunkingConfig,
    EmbeddingMetrics,
    EmbeddingOptions,
    EmbeddingProvider,
    EmbeddingResult,
    EmbeddingResultAdapter,
    EmbeddingSkipped,
    EmbeddingSource,
    EmbeddingSuccessMultiple,
    EmbeddingSuccessSingle,
    EmbedRequest,
    EmbedResponse,
    HttpEmbeddingConfig,
    InputConfig,
    OutputConfig,
    PiiRedactionConfig,
    ProviderConfig,
    SafetyConfig,
    ScrapedData,
    TextChunk,
    Usage,
)

__all__ = [
    "CacheConfig",
    "CacheKeyParams",
    "ChunkingConfig",
    "EmbedRequest",
    "EmbedResponse",
    "EmbeddingCache",
    "EmbeddingMetrics",
    "EmbeddingOptions",
    "EmbeddingProvider",
    "EmbeddingResult",
    "EmbeddingResultAdapter",
    "EmbeddingSkipped",
    "EmbeddingSource",
    "EmbeddingSuccessMultiple",
    "EmbeddingSuccessSingle",
    "HttpEmbeddingConfig",
    "HttpEmbeddingProvider",
    "InMemoryEmbeddingCache",
    "InputConfig",
    "LocalModelEmbeddingProvider",
    "NoOpEmbeddingCache",
    "OutputConfig",
    "PiiRedactionConfig",
    "ProviderConfig",
    "RedisEmbeddingCache",
    "SafetyConfig",
    "ScrapedData",
    "TextChunk",
    "Usage",
    "aggregate_vectors",
    "apply_max_tokens_to_chunking",
    "chunk_text",
    "contains_pii",
    "cosine_similarity",
    "create_azure_embedding",
    "create_cohere_embedding",
    "create_embedding_provider",
    "create_http_embedding",
    "create_huggingface_embedding",
    "create_local_embedding",
    "create_ollama_embedding",
    "create_openai_embedding",
    "create_pii_redactor",
    "dot_product",
    "embed",
    "embed_from_record",
    "estimate_tokens",
    "euclidean_distance",
    "generate_cache_key",
    "generate_checksum",
    "generate_embeddings",
    "get_chunking_stats",
    "get_default_cache",
    "get_dimensions",
    "get_effective_model",
    "needs_chunking",
    "normalize_vector",
    "preview_input",
    "redact",
    "redact_pii",
    "reset_default_cache",
    "select_input",
    "validate_cached_result",
    "validate_embed_response",
    "validate_input",
]
