"""Generic REST embedding provider."""

from typing import Any, List

import structlog

from ...common.errors import EmbeddingValidationError
from ...transport import ResilientHttpClient, UrlSecurityOptions
from ..types import EmbeddingProvider, EmbeddingVector, EmbedRequest, EmbedResponse, HttpEmbeddingConfig
from .base import check_embeddings, extract_usage

logger = structlog.get_logger("http_embedding")


def default_request_builder(texts: List[str], model: str) -> Any:
    return {"input": texts, "model": model}


def default_response_mapper(payload: Any) -> List[EmbeddingVector]:
    if isinstance(payload, dict):
        if isinstance(payload.get("data"), list):
            return [item.get("embedding") for item in payload["data"] if isinstance(item, dict)]
        if isinstance(payload.get("embeddings"), list):
            return payload["embeddings"]
        if isinstance(payload.get("embedding"), list):
            return [payload["embedding"]]
    if isinstance(payload, list):
        return payload
    raise EmbeddingValidationError("Unable to parse embedding response. Provide a custom response_mapper.")


class HttpEmbeddingProvider(EmbeddingProvider):
    """Embedding provider for any JSON-over-HTTP API.

    The endpoint is validated on construction and again, with DNS, on every
    request.
    """

    name = "http-embedding"

    def __init__(self, config: HttpEmbeddingConfig):
        self.config = config
        self.model_name = config.model
        self.request_builder = config.request_builder or default_request_builder
        self.response_mapper = config.response_mapper or default_response_mapper
        self.client = ResilientHttpClient(
            config.base_url,
            headers=config.headers,
            security=UrlSecurityOptions(
                require_https=config.require_https,
                allow_private=config.allow_private,
                resolve_dns=config.resolve_dns,
                allow_redirects=config.allow_redirects,
            ),
            resilience=config.resilience,
            error_mapper=config.error_mapper,
            timeout_ms=config.timeout_ms,
            client=config.client,
            name=self.name,
        )

    @property
    def cache_identity(self) -> str:
        return f"{self.config.base_url.rstrip('/')}:{self.model_name}"

    async def embed(self, texts: List[str], request: EmbedRequest) -> EmbedResponse:
        model = request.model or self.model_name
        body = self.request_builder(texts, model)

        result = await self.client.post_json(body, cancel_token=request.cancel_token)

        try:
            embeddings = self.response_mapper(result.data)
        except (KeyError, TypeError, AttributeError, IndexError) as e:
            raise EmbeddingValidationError(f"Unable to parse embedding response: {e}", cause=e)

        vectors = check_embeddings(list(embeddings), len(texts))
        logger.debug("Embedded texts", count=len(texts), model=model, dimensions=len(vectors[0]) if vectors else 0)
        return EmbedResponse(embeddings=vectors, usage=extract_usage(result.data))

    async def aclose(self) -> None:
        await self.client.aclose()


def create_http_embedding(config: HttpEmbeddingConfig) -> HttpEmbeddingProvider:
    return HttpEmbeddingProvider(config)
