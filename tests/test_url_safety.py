"""Tests for SSRF protection of provider endpoints."""

import socket

import pytest

from embedkit.common.errors import InvalidInputError, TransientNetworkError
from embedkit.transport import UrlSecurityOptions, is_private_host, url_safety, validate_url, validate_url_with_dns


@pytest.mark.parametrize("host", [
    "localhost",
    "api.localhost",
    "127.0.0.1",
    "10.1.2.3",
    "172.16.0.1",
    "192.168.1.1",
    "169.254.169.254",
    "0.0.0.0",
    "::1",
    "[::1]",
    "fe80::1%eth0",
    "fd00::1",
    "::ffff:127.0.0.1",
])
def test_private_hosts(host):
    assert is_private_host(host)


@pytest.mark.parametrize("host", ["api.openai.com", "8.8.8.8", "2606:4700:4700::1111"])
def test_public_hosts(host):
    assert not is_private_host(host)


def test_https_required_by_default():
    with pytest.raises(InvalidInputError, match="HTTPS required"):
        validate_url("http://api.example.com/v1/embeddings")

    parsed = validate_url(
        "http://api.example.com/v1/embeddings",
        UrlSecurityOptions(require_https=False),
    )
    assert parsed.host == "api.example.com"


@pytest.mark.parametrize("url", ["ftp://api.example.com/file", "not a url", "https://"])
def test_invalid_urls(url):
    with pytest.raises(InvalidInputError):
        validate_url(url)


def test_private_literal_rejected_unless_allowed():
    with pytest.raises(InvalidInputError, match="Private/internal"):
        validate_url("https://169.254.169.254/latest/meta-data")

    parsed = validate_url("http://localhost:11434/api", UrlSecurityOptions(require_https=False, allow_private=True))
    assert parsed.port == 11434


@pytest.mark.asyncio
async def test_dns_public_answer_passes(public_dns):
    await validate_url_with_dns("https://api.example.com/v1/embeddings")
    assert public_dns == ["api.example.com"]


@pytest.mark.asyncio
async def test_dns_private_answer_rejected(monkeypatch):
    """Test that a public name resolving to an internal address is rejected."""
    async def resolve(host, port=None):
        return ["93.184.216.34", "10.0.0.5"]

    monkeypatch.setattr(url_safety, "resolve_host", resolve)

    with pytest.raises(InvalidInputError, match="DNS resolved to private address"):
        await validate_url_with_dns("https://rebind.example.com/v1")


@pytest.mark.asyncio
async def test_dns_failure_is_transient(monkeypatch):
    async def resolve(host, port=None):
        raise socket.gaierror(socket.EAI_AGAIN, "Temporary failure in name resolution")

    monkeypatch.setattr(url_safety, "resolve_host", resolve)

    with pytest.raises(TransientNetworkError):
        await validate_url_with_dns("https://api.example.com/v1")


@pytest.mark.asyncio
async def test_dns_skipped_when_disabled_or_literal(monkeypatch):
    async def resolve(host, port=None):
        raise AssertionError("resolver should not be called")

    monkeypatch.setattr(url_safety, "resolve_host", resolve)

    await validate_url_with_dns("https://api.example.com/v1", UrlSecurityOptions(resolve_dns=False))
    await validate_url_with_dns("https://93.184.216.34/v1")
