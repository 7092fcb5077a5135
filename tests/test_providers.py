"""Tests for provider adapters and response validation."""

import json
import math

import httpx
import numpy as np
import pytest

from embedkit.common.errors import (
    ConfigurationError,
    DimensionMismatchError,
    EmbeddingValidationError,
    InvalidInputError,
)
from embedkit.embeddings.providers import (
    HttpEmbeddingProvider,
    LocalModelEmbeddingProvider,
    create_azure_embedding,
    create_cohere_embedding,
    create_embedding_provider,
    create_http_embedding,
    create_huggingface_embedding,
    create_ollama_embedding,
    create_openai_embedding,
    get_provider_cache_key,
    validate_embed_response,
)
from embedkit.embeddings.types import EmbedRequest, HttpEmbeddingConfig, ProviderConfig

from .conftest import StaticProvider


def mock_client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class RecordingHandler:
    """MockTransport handler that records requests and replies with ``payload``."""

    def __init__(self, payload):
        self.payload = payload
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        return httpx.Response(200, json=self.payload)

    @property
    def body(self):
        return json.loads(self.requests[-1].content)


@pytest.mark.parametrize("payload", [
    {"data": [{"embedding": [0.1, 0.2]}, {"embedding": [0.3, 0.4]}]},
    {"embeddings": [[0.1, 0.2], [0.3, 0.4]]},
    [[0.1, 0.2], [0.3, 0.4]],
])
def test_validate_response_shapes(payload):
    response = validate_embed_response(payload, 2)
    assert response.embeddings == [[0.1, 0.2], [0.3, 0.4]]


def test_validate_response_single_embedding_and_usage():
    response = validate_embed_response(
        {"embedding": [1, 2, 3], "usage": {"prompt_tokens": 4, "total_tokens": 4}}, 1
    )
    assert response.embeddings == [[1.0, 2.0, 3.0]]
    assert response.usage.total_tokens == 4


def test_validate_response_errors():
    with pytest.raises(EmbeddingValidationError, match="count mismatch"):
        validate_embed_response({"embeddings": [[0.1]]}, 2)
    with pytest.raises(DimensionMismatchError, match="index 1"):
        validate_embed_response({"embeddings": [[0.1, 0.2], [0.3]]}, 2)
    with pytest.raises(EmbeddingValidationError, match="finite"):
        validate_embed_response({"embeddings": [[0.1, math.nan]]}, 1)
    with pytest.raises(EmbeddingValidationError):
        validate_embed_response({"results": []}, 1)
    with pytest.raises(EmbeddingValidationError):
        validate_embed_response("not json", 1)


@pytest.mark.asyncio
async def test_http_provider_default_format():
    handler = RecordingHandler({
        "data": [{"embedding": [0.5, 0.5]}],
        "usage": {"prompt_tokens": 3, "total_tokens": 3},
    })
    provider = create_http_embedding(HttpEmbeddingConfig(
        base_url="https://api.example.com/v1/embeddings",
        model="embed-small",
        resolve_dns=False,
        client=mock_client(handler),
    ))

    response = await provider.embed(["hello world"], EmbedRequest())

    assert handler.body == {"input": ["hello world"], "model": "embed-small"}
    assert response.embeddings == [[0.5, 0.5]]
    assert response.usage.total_tokens == 3

    await provider.embed(["hello"], EmbedRequest(model="embed-large"))
    assert handler.body["model"] == "embed-large"


@pytest.mark.asyncio
async def test_http_provider_custom_mapping():
    handler = RecordingHandler({"result": {"vectors": [[1.0, 0.0]]}})
    provider = HttpEmbeddingProvider(HttpEmbeddingConfig(
        base_url="https://api.example.com/embed",
        model="m",
        resolve_dns=False,
        request_builder=lambda texts, model: {"texts": texts, "engine": model},
        response_mapper=lambda payload: payload["result"]["vectors"],
        client=mock_client(handler),
    ))

    response = await provider.embed(["a"], EmbedRequest())

    assert handler.body == {"texts": ["a"], "engine": "m"}
    assert response.embeddings == [[1.0, 0.0]]


@pytest.mark.asyncio
async def test_http_provider_unparseable_response():
    provider = create_http_embedding(HttpEmbeddingConfig(
        base_url="https://api.example.com/embed",
        model="m",
        resolve_dns=False,
        client=mock_client(RecordingHandler({"unexpected": True})),
    ))

    with pytest.raises(EmbeddingValidationError):
        await provider.embed(["a"], EmbedRequest())


def test_http_provider_rejects_private_endpoint():
    with pytest.raises(InvalidInputError):
        create_http_embedding(HttpEmbeddingConfig(base_url="https://192.168.1.20/embed", model="m"))


@pytest.mark.asyncio
async def test_openai_preset(monkeypatch, public_dns):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(ConfigurationError, match="OPENAI_API_KEY"):
        create_openai_embedding()

    handler = RecordingHandler({"data": [{"embedding": [0.1, 0.2]}]})
    monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
    provider = create_openai_embedding(organization="org-1", client=mock_client(handler))

    await provider.embed(["text"], EmbedRequest())

    request = handler.requests[0]
    assert request.headers["authorization"] == "Bearer sk-env"
    assert request.headers["openai-organization"] == "org-1"
    assert handler.body == {"input": ["text"], "model": "text-embedding-3-small"}
    assert public_dns == ["api.openai.com"]


@pytest.mark.asyncio
async def test_azure_preset(public_dns):
    handler = RecordingHandler({"data": [{"embedding": [0.1]}]})
    provider = create_azure_embedding(
        endpoint="https://contoso.openai.azure.com/",
        deployment_name="embed-deploy",
        api_version="2024-02-01",
        api_key="azure-key",
        client=mock_client(handler),
    )

    await provider.embed(["text"], EmbedRequest())

    request = handler.requests[0]
    assert request.url.path == "/openai/deployments/embed-deploy/embeddings"
    assert request.url.params["api-version"] == "2024-02-01"
    assert request.headers["api-key"] == "azure-key"
    assert handler.body == {"input": ["text"]}


@pytest.mark.asyncio
async def test_ollama_preset_allows_local_http():
    handler = RecordingHandler({"embedding": [0.3, 0.4]})
    provider = create_ollama_embedding(client=mock_client(handler))

    response = await provider.embed(["local text"], EmbedRequest())

    assert handler.requests[0].url.host == "localhost"
    assert handler.body == {"model": "nomic-embed-text", "prompt": "local text"}
    assert response.embeddings == [[0.3, 0.4]]


@pytest.mark.asyncio
async def test_cohere_preset(public_dns):
    handler = RecordingHandler({"embeddings": [[0.1, 0.2]]})
    provider = create_cohere_embedding(api_key="co-key", client=mock_client(handler))

    await provider.embed(["doc"], EmbedRequest())

    assert handler.body == {"texts": ["doc"], "model": "embed-english-v3.0", "input_type": "search_document"}


@pytest.mark.asyncio
async def test_huggingface_preset(monkeypatch, public_dns):
    monkeypatch.delenv("HF_TOKEN", raising=False)
    monkeypatch.delenv("HUGGINGFACE_API_KEY", raising=False)
    handler = RecordingHandler([0.1, 0.2, 0.3])
    provider = create_huggingface_embedding("sentence-transformers/all-MiniLM-L6-v2", client=mock_client(handler))

    response = await provider.embed(["one text"], EmbedRequest())

    assert "authorization" not in handler.requests[0].headers
    assert handler.body == {"inputs": ["one text"]}
    assert response.embeddings == [[0.1, 0.2, 0.3]]


class FakeEncoder:
    def __init__(self):
        self.kwargs = None

    def encode(self, texts, **kwargs):
        self.kwargs = kwargs
        return np.ones((len(texts), 4), dtype=np.float32)


@pytest.mark.asyncio
async def test_local_model_provider():
    encoder = FakeEncoder()
    provider = LocalModelEmbeddingProvider(encoder, batch_size=8)

    response = await provider.embed(["a", "b"], EmbedRequest())

    assert response.embeddings == [[1.0] * 4, [1.0] * 4]
    assert encoder.kwargs == {"batch_size": 8, "normalize_embeddings": True}


def test_provider_factory():
    custom = StaticProvider()
    assert create_embedding_provider(ProviderConfig.custom(custom)) is custom

    http = create_embedding_provider(ProviderConfig.http(HttpEmbeddingConfig(
        base_url="https://api.example.com/v1/embeddings/",
        model="m",
    )))
    assert isinstance(http, HttpEmbeddingProvider)


def test_provider_config_requires_matching_payload():
    with pytest.raises(ConfigurationError):
        ProviderConfig(type="http")
    with pytest.raises(ConfigurationError):
        ProviderConfig(type="custom")


def test_provider_cache_key():
    http = ProviderConfig.http(HttpEmbeddingConfig(base_url="https://api.example.com/v1/", model="m"))
    assert get_provider_cache_key(http) == "http:https://api.example.com/v1:m"
    assert get_provider_cache_key(ProviderConfig.custom(StaticProvider())) == "custom:static"


def test_provider_cache_key_includes_endpoint_and_model():
    """Test that presets of one class with different models never share keys."""
    small = create_openai_embedding(api_key="sk", model="text-embedding-3-small")
    large = create_openai_embedding(api_key="sk", model="text-embedding-3-large")
    other_vendor = create_cohere_embedding(api_key="co", model="text-embedding-3-small")

    keys = {get_provider_cache_key(ProviderConfig.custom(p)) for p in (small, large, other_vendor)}

    assert len(keys) == 3
    assert get_provider_cache_key(ProviderConfig.custom(small)) == (
        "custom:https://api.openai.com/v1/embeddings:text-embedding-3-small"
    )
    assert small.model_name == "text-embedding-3-small"


def test_local_provider_identity():
    named = LocalModelEmbeddingProvider(FakeEncoder(), model_name="all-MiniLM-L6-v2")
    unnamed = LocalModelEmbeddingProvider(FakeEncoder())

    assert named.cache_identity == "local-model:all-MiniLM-L6-v2"
    assert unnamed.cache_identity == "local-model"
