"""Provider capability and response validation shared by all adapters."""

import math
from typing import Any, List, Optional

from ...common.errors import DimensionMismatchError, EmbeddingValidationError
from ..types import EmbeddingProvider, EmbedRequest, EmbedResponse, EmbeddingVector, ProviderConfig, Usage

DEFAULT_MODELS = {
    "openai": "text-embedding-3-small",
    "azure": "text-embedding-ada-002",
    "ollama": "nomic-embed-text",
    "cohere": "embed-english-v3.0",
    "local": "sentence-transformers/all-MiniLM-L6-v2",
}


def get_provider_cache_key(config: ProviderConfig) -> str:
    """Stable identity of a provider configuration for cache keys."""
    if config.type == "http":
        http = config.http_config
        return f"http:{http.base_url.rstrip('/')}:{http.model}"
    return f"custom:{config.provider.cache_identity}"


def get_default_model(provider_type: str) -> str:
    return DEFAULT_MODELS.get(provider_type, "default")


def _extract_embeddings(payload: Any) -> List[Any]:
    if isinstance(payload, list):
        return payload
    if not isinstance(payload, dict):
        raise EmbeddingValidationError("Invalid embedding response: expected object")

    if isinstance(payload.get("embeddings"), list):
        return payload["embeddings"]

    if isinstance(payload.get("data"), list):
        embeddings = []
        for item in payload["data"]:
            if not isinstance(item, dict) or not isinstance(item.get("embedding"), list):
                raise EmbeddingValidationError("Invalid embedding response: missing embedding in data item")
            embeddings.append(item["embedding"])
        return embeddings

    if isinstance(payload.get("embedding"), list):
        return [payload["embedding"]]

    raise EmbeddingValidationError("Invalid embedding response: missing embeddings array")


def extract_usage(payload: Any) -> Optional[Usage]:
    usage = payload.get("usage") if isinstance(payload, dict) else None
    if not isinstance(usage, dict):
        return None
    return Usage(
        prompt_tokens=int(usage.get("prompt_tokens") or 0),
        total_tokens=int(usage.get("total_tokens") or 0),
    )


def check_embeddings(embeddings: List[Any], expected_count: int) -> List[EmbeddingVector]:
    """Check count, shared dimensionality and finiteness of provider vectors."""
    if len(embeddings) != expected_count:
        raise EmbeddingValidationError(
            f"Embedding count mismatch: expected {expected_count}, got {len(embeddings)}"
        )
    if not embeddings:
        return []

    first = embeddings[0]
    if not isinstance(first, list) or not first:
        raise EmbeddingValidationError("Invalid embedding response: empty first embedding")

    dimensions = len(first)
    vectors: List[EmbeddingVector] = []
    for i, embedding in enumerate(embeddings):
        if not isinstance(embedding, list) or len(embedding) != dimensions:
            got = len(embedding) if isinstance(embedding, list) else 0
            raise DimensionMismatchError(
                f"Embedding dimension mismatch at index {i}: expected {dimensions}, got {got}"
            )
        for value in embedding:
            if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
                raise EmbeddingValidationError("Invalid embedding value: expected finite number")
        vectors.append([float(value) for value in embedding])
    return vectors


def validate_embed_response(payload: Any, expected_count: int) -> EmbedResponse:
    """Parse and validate a provider payload.

    Accepts ``{"data": [{"embedding": [...]}]}``, ``{"embeddings": [...]}``,
    ``{"embedding": [...]}`` or a bare list of vectors. OpenAI-style
    ``usage`` is carried over when present.
    """
    embeddings = check_embeddings(_extract_embeddings(payload), expected_count)
    return EmbedResponse(embeddings=embeddings, usage=extract_usage(payload))


__all__ = [
    "EmbedRequest",
    "EmbedResponse",
    "EmbeddingProvider",
    "check_embeddings",
    "extract_usage",
    "get_default_model",
    "get_provider_cache_key",
    "validate_embed_response",
]
