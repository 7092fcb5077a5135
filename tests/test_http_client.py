"""Tests for the resilient JSON client."""

import json

import httpx
import pytest

from embedkit.common.errors import (
    AuthError,
    InvalidInputError,
    ProviderError,
    TransientNetworkError,
)
from embedkit.resilience import ResilienceConfig, RetryConfig
from embedkit.transport import ResilientHttpClient, UrlSecurityOptions, create_headers

BASE_URL = "https://api.example.com/v1/embeddings"


def make_client(handler, security=None, **kwargs):
    transport = httpx.MockTransport(handler)
    return ResilientHttpClient(
        BASE_URL,
        security=security or UrlSecurityOptions(resolve_dns=False),
        client=httpx.AsyncClient(transport=transport),
        name="test-provider",
        **kwargs
    )


@pytest.mark.asyncio
async def test_post_json_sends_body_and_headers():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        seen["auth"] = request.headers.get("authorization")
        seen["content_type"] = request.headers.get("content-type")
        return httpx.Response(200, json={"data": [{"embedding": [0.1, 0.2]}]})

    client = make_client(handler, headers=create_headers("sk-test"))
    result = await client.post_json({"input": ["hello"], "model": "m"})

    assert result.status == 200
    assert result.data == {"data": [{"embedding": [0.1, 0.2]}]}
    assert seen["body"] == {"input": ["hello"], "model": "m"}
    assert seen["auth"] == "Bearer sk-test"
    assert seen["content_type"] == "application/json"


@pytest.mark.asyncio
async def test_auth_failure_maps_to_auth_error():
    def handler(request):
        return httpx.Response(401, json={"error": {"message": "Invalid API key"}})

    client = make_client(handler)
    with pytest.raises(AuthError) as exc_info:
        await client.post_json({})

    assert exc_info.value.status_code == 401
    assert "Invalid API key" in exc_info.value.message


@pytest.mark.asyncio
@pytest.mark.parametrize("status, error_class", [
    (429, TransientNetworkError),
    (503, TransientNetworkError),
    (400, ProviderError),
    (404, ProviderError),
])
async def test_status_mapping(status, error_class):
    def handler(request):
        return httpx.Response(status, text="nope")

    client = make_client(handler)
    with pytest.raises(error_class) as exc_info:
        await client.post_json({})

    assert exc_info.value.status_code == status


@pytest.mark.asyncio
async def test_error_mapper_used_for_message():
    def handler(request):
        return httpx.Response(400, json={"failure": {"reason": "input too long"}})

    client = make_client(handler, error_mapper=lambda body: body["failure"]["reason"])
    with pytest.raises(ProviderError, match="input too long"):
        await client.post_json({})


@pytest.mark.asyncio
async def test_invalid_json_response():
    def handler(request):
        return httpx.Response(200, text="<html>oops</html>")

    client = make_client(handler)
    with pytest.raises(ProviderError, match="invalid JSON"):
        await client.post_json({})


@pytest.mark.asyncio
async def test_connection_error_is_transient():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = make_client(handler)
    with pytest.raises(TransientNetworkError):
        await client.post_json({})


@pytest.mark.asyncio
async def test_redirect_rejected_by_default():
    def handler(request):
        return httpx.Response(302, headers={"location": "https://other.example.com/v1"})

    client = make_client(handler)
    with pytest.raises(InvalidInputError, match="Redirect not allowed"):
        await client.post_json({})


@pytest.mark.asyncio
async def test_redirect_followed_when_allowed():
    def handler(request):
        if request.url.host == "api.example.com":
            return httpx.Response(307, headers={"location": "https://eu.example.com/v1/embeddings"})
        return httpx.Response(200, json={"ok": True})

    client = make_client(handler, security=UrlSecurityOptions(resolve_dns=False, allow_redirects=True))
    result = await client.post_json({})

    assert result.data == {"ok": True}


@pytest.mark.asyncio
async def test_redirect_to_private_address_rejected():
    """Test that redirect targets are validated like the original URL."""
    def handler(request):
        return httpx.Response(302, headers={"location": "https://10.0.0.1/internal"})

    client = make_client(handler, security=UrlSecurityOptions(resolve_dns=False, allow_redirects=True))
    with pytest.raises(InvalidInputError, match="Private/internal"):
        await client.post_json({})


@pytest.mark.asyncio
async def test_too_many_redirects():
    hops = []

    def handler(request):
        hops.append(str(request.url))
        return httpx.Response(302, headers={"location": f"https://api.example.com/hop{len(hops)}"})

    client = make_client(
        handler,
        security=UrlSecurityOptions(resolve_dns=False, allow_redirects=True, max_redirects=3),
    )
    with pytest.raises(ProviderError, match="Too many redirects"):
        await client.post_json({})

    assert len(hops) == 4


@pytest.mark.asyncio
async def test_client_level_resilience_retries():
    calls = 0

    def handler(request):
        nonlocal calls
        calls += 1
        if calls == 1:
            return httpx.Response(503, text="busy")
        return httpx.Response(200, json={"ok": True})

    client = make_client(handler, resilience=ResilienceConfig(retry=RetryConfig(backoff_ms=1)))
    result = await client.post_json({})

    assert result.data == {"ok": True}
    assert calls == 2
    assert client.get_resilience_state().circuit_breaker is not None


def test_insecure_base_url_rejected():
    with pytest.raises(InvalidInputError):
        ResilientHttpClient("http://api.example.com/v1")


def test_create_headers():
    headers = create_headers("key", {"X-Trace": "1"})
    assert headers == {
        "Content-Type": "application/json",
        "Authorization": "Bearer key",
        "X-Trace": "1",
    }
    assert "Authorization" not in create_headers()
