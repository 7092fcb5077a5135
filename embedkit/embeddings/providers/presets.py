"""Ready-made providers for common embedding APIs.

API keys come from the keyword argument or the usual environment variable.
"""

import asyncio
import os
from typing import Any, Dict, List, Optional, Union

import httpx

from ...common.errors import ConfigurationError, EmbeddingValidationError
from ...resilience import ResilienceConfig
from ..types import EmbeddingProvider, EmbeddingVector, EmbedRequest, EmbedResponse, HttpEmbeddingConfig
from .base import check_embeddings, get_default_model
from .http import HttpEmbeddingProvider

OPENAI_EMBEDDINGS_URL = "https://api.openai.com/v1/embeddings"
OLLAMA_EMBEDDINGS_URL = "http://localhost:11434/api/embeddings"
HUGGINGFACE_INFERENCE_URL = "https://api-inference.huggingface.co/models"
COHERE_EMBED_URL = "https://api.cohere.ai/v1/embed"


def _require_key(value: Optional[str], env_var: str, provider: str) -> str:
    api_key = value or os.environ.get(env_var)
    if not api_key:
        raise ConfigurationError(
            f"{provider} API key required. Set {env_var} env var or pass api_key."
        )
    return api_key


def _data_embeddings(payload: Dict[str, Any]) -> List[EmbeddingVector]:
    return [item["embedding"] for item in payload["data"]]


def create_openai_embedding(
    api_key: Optional[str] = None,
    model: Optional[str] = None,
    base_url: str = OPENAI_EMBEDDINGS_URL,
    organization: Optional[str] = None,
    resilience: Optional[ResilienceConfig] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> HttpEmbeddingProvider:
    headers = {"Authorization": f"Bearer {_require_key(api_key, 'OPENAI_API_KEY', 'OpenAI')}"}
    if organization:
        headers["OpenAI-Organization"] = organization

    return HttpEmbeddingProvider(HttpEmbeddingConfig(
        base_url=base_url,
        model=model or get_default_model("openai"),
        headers=headers,
        request_builder=lambda texts, model: {"input": texts, "model": model},
        response_mapper=_data_embeddings,
        resilience=resilience,
        client=client,
    ))


def create_azure_embedding(
    endpoint: str,
    deployment_name: str,
    api_version: str,
    api_key: Optional[str] = None,
    resilience: Optional[ResilienceConfig] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> HttpEmbeddingProvider:
    key = _require_key(api_key, "AZURE_OPENAI_API_KEY", "Azure OpenAI")
    base_url = (
        f"{endpoint.rstrip('/')}/openai/deployments/{deployment_name}"
        f"/embeddings?api-version={api_version}"
    )
    return HttpEmbeddingProvider(HttpEmbeddingConfig(
        base_url=base_url,
        model=deployment_name,
        headers={"api-key": key},
        request_builder=lambda texts, model: {"input": texts},
        response_mapper=_data_embeddings,
        resilience=resilience,
        client=client,
    ))


def create_ollama_embedding(
    base_url: str = OLLAMA_EMBEDDINGS_URL,
    model: Optional[str] = None,
    resilience: Optional[ResilienceConfig] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> HttpEmbeddingProvider:
    """Local Ollama server. Plain HTTP and private addresses are allowed.

    Ollama embeds one prompt per request, so only the first text is sent.
    """
    return HttpEmbeddingProvider(HttpEmbeddingConfig(
        base_url=base_url,
        model=model or get_default_model("ollama"),
        require_https=False,
        allow_private=True,
        request_builder=lambda texts, model: {"model": model, "prompt": texts[0]},
        response_mapper=lambda payload: [payload["embedding"]],
        resilience=resilience,
        client=client,
    ))


def _huggingface_embeddings(payload: Any) -> List[EmbeddingVector]:
    if isinstance(payload, list) and payload:
        if isinstance(payload[0], list):
            return payload
        return [payload]
    raise EmbeddingValidationError("Unexpected HuggingFace response format")


def create_huggingface_embedding(
    model: str,
    api_key: Optional[str] = None,
    resilience: Optional[ResilienceConfig] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> HttpEmbeddingProvider:
    """HuggingFace Inference API. The token is optional for public models."""
    token = api_key or os.environ.get("HF_TOKEN") or os.environ.get("HUGGINGFACE_API_KEY")
    headers = {"Authorization": f"Bearer {token}"} if token else {}
    return HttpEmbeddingProvider(HttpEmbeddingConfig(
        base_url=f"{HUGGINGFACE_INFERENCE_URL}/{model}",
        model=model,
        headers=headers,
        request_builder=lambda texts, model: {"inputs": texts},
        response_mapper=_huggingface_embeddings,
        resilience=resilience,
        client=client,
    ))


def create_cohere_embedding(
    api_key: Optional[str] = None,
    model: Optional[str] = None,
    resilience: Optional[ResilienceConfig] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> HttpEmbeddingProvider:
    key = _require_key(api_key, "COHERE_API_KEY", "Cohere")
    return HttpEmbeddingProvider(HttpEmbeddingConfig(
        base_url=COHERE_EMBED_URL,
        model=model or get_default_model("cohere"),
        headers={"Authorization": f"Bearer {key}"},
        request_builder=lambda texts, model: {
            "texts": texts,
            "model": model,
            "input_type": "search_document",
        },
        response_mapper=lambda payload: payload["embeddings"],
        resilience=resilience,
        client=client,
    ))


class LocalModelEmbeddingProvider(EmbeddingProvider):
    """In-process model exposing ``encode(texts, ...)``, e.g. SentenceTransformer.

    Encoding is CPU/GPU bound, so it runs in a worker thread.
    """

    name = "local-model"

    def __init__(self, model: Any, normalize: bool = True, batch_size: int = 32, model_name: Optional[str] = None):
        self.model = model
        self.model_name = model_name
        self.normalize = normalize
        self.batch_size = batch_size

    async def embed(self, texts: List[str], request: EmbedRequest) -> EmbedResponse:
        encoded = await asyncio.to_thread(
            self.model.encode,
            texts,
            batch_size=self.batch_size,
            normalize_embeddings=self.normalize,
        )
        vectors = [list(map(float, row)) for row in encoded]
        return EmbedResponse(embeddings=check_embeddings(vectors, len(texts)))


def create_local_embedding(
    model: Union[str, Any, None] = None,
    normalize: bool = True,
    batch_size: int = 32,
) -> LocalModelEmbeddingProvider:
    """Wrap a loaded model, or load a SentenceTransformer by name.

    Loading by name needs the ``local`` extra (sentence-transformers).
    """
    model_name = None
    if model is None or isinstance(model, str):
        from sentence_transformers import SentenceTransformer

        model_name = model or get_default_model("local")
        model = SentenceTransformer(model_name)
    return LocalModelEmbeddingProvider(model, normalize=normalize, batch_size=batch_size, model_name=model_name)
