"""Tests for common utilities."""

import io
import json

import httpx
import pytest
import structlog

from embedkit.common.config import EmbeddingSettings
from embedkit.common.errors import (
    AuthError,
    ConfigurationError,
    ProviderError,
    TimeoutExceededError,
    TransientNetworkError,
    error_from_status,
    normalize_error,
    parse_error_body,
)
from embedkit.common.logging import configure_logging, get_logger
from embedkit.common.metrics import MetricsCollector
from embedkit.embeddings.cache import InMemoryEmbeddingCache, RedisEmbeddingCache
from embedkit.embeddings.types import EmbeddingMetrics
from embedkit.resilience import CircuitBreaker


def test_settings_defaults(monkeypatch):
    """Test configuration loading."""
    monkeypatch.delenv("EMBED_REDIS_URL", raising=False)
    settings = EmbeddingSettings(_env_file=None)

    assert settings.embed_env == "local"
    assert settings.embed_log_level == "INFO"
    assert settings.embed_chunk_size == 500
    assert settings.embed_requests_per_minute is None

    resilience = settings.to_resilience_config()
    assert resilience.retry.max_attempts == 3
    assert resilience.circuit_breaker.failure_threshold == 5
    assert resilience.rate_limit is None

    assert isinstance(settings.build_cache(), InMemoryEmbeddingCache)
    assert settings.to_safety_config().pii_redaction is None


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("EMBED_CHUNK_SIZE", "200")
    monkeypatch.setenv("EMBED_REQUESTS_PER_MINUTE", "120")
    monkeypatch.setenv("EMBED_REDACT_PII", "true")
    monkeypatch.setenv("EMBED_REDIS_URL", "redis://cache.internal:6379/2")

    settings = EmbeddingSettings(_env_file=None)

    assert settings.to_chunking_config().size == 200
    assert settings.to_resilience_config().rate_limit.requests_per_minute == 120
    assert settings.to_safety_config().pii_redaction.email
    assert isinstance(settings.build_cache(), RedisEmbeddingCache)


def test_logging_configuration():
    stream = io.StringIO()
    try:
        configure_logging("test-service", "INFO", "json", stream=stream, tenant="acme")
        get_logger("logging_test").info("hello", chunks=2)

        event = json.loads(stream.getvalue().strip().splitlines()[-1])
        assert event["event"] == "hello"
        assert event["service"] == "test-service"
        assert event["tenant"] == "acme"
        assert event["chunks"] == 2

        # This should not raise an exception
        configure_logging("test-service", "debug", "console", stream=stream)
    finally:
        structlog.reset_defaults()
        structlog.contextvars.clear_contextvars()


def test_logging_rejects_unknown_settings():
    with pytest.raises(ConfigurationError):
        configure_logging("test-service", "LOUD")
    with pytest.raises(ConfigurationError):
        configure_logging("test-service", "INFO", "xml")


def make_metrics(**overrides):
    values = dict(
        provider="static",
        model="embed-small",
        input_tokens=40,
        output_dimensions=3,
        chunks=2,
        latency_ms=120.0,
        cached=False,
        retries=1,
        pii_redacted=False,
    )
    values.update(overrides)
    return EmbeddingMetrics(**values)


def test_metrics_collector():
    collector = MetricsCollector("test-service")
    hook = collector.as_metrics_hook()
    service = {"service": "test-service"}
    per_provider = {"service": "test-service", "provider": "static"}

    hook(make_metrics())
    hook(make_metrics(cached=True, retries=0))
    collector.as_skip_hook()("invalid_input", None)

    sample = collector.registry.get_sample_value
    assert sample(
        "embedkit_embedding_requests_total",
        {**per_provider, "model": "embed-small", "outcome": "success"},
    ) == 2.0
    assert sample("embedkit_embedding_chunks_total", per_provider) == 2.0
    assert sample("embedkit_embedding_retries_total", per_provider) == 1.0
    assert sample("embedkit_cache_hits_total", service) == 1.0
    assert sample("embedkit_cache_misses_total", service) == 1.0
    assert sample("embedkit_embedding_skipped_total", {**service, "reason": "invalid_input"}) == 1.0
    assert "embedkit_embedding_duration_seconds" in collector.get_metrics()


def test_circuit_breaker_gauge():
    collector = MetricsCollector("test-service")
    breaker = CircuitBreaker(name="openai")
    breaker.force_open()

    collector.record_circuit_breaker(breaker)

    assert collector.registry.get_sample_value(
        "embedkit_circuit_breaker_state", {"service": "test-service", "breaker": "openai"}
    ) == 2.0


@pytest.mark.parametrize("status, error_class", [
    (401, AuthError),
    (403, AuthError),
    (408, TransientNetworkError),
    (429, TransientNetworkError),
    (502, TransientNetworkError),
    (599, TransientNetworkError),
    (400, ProviderError),
    (422, ProviderError),
])
def test_error_from_status(status, error_class):
    error = error_from_status(status, "openai", "details")

    assert type(error) is error_class
    assert error.status_code == status
    assert error.message == f"openai API error ({status}): details"


def test_parse_error_body():
    assert parse_error_body(httpx.Response(400, json={"error": {"message": "bad input"}})) == "bad input"
    assert parse_error_body(httpx.Response(400, json={"error": "quota"})) == "quota"
    assert parse_error_body(httpx.Response(400, json={"detail": "missing field"})) == "missing field"
    assert parse_error_body(httpx.Response(500, text="upstream down")) == "upstream down"


def test_normalize_error():
    request = httpx.Request("POST", "https://api.example.com")
    original = AuthError("bad key", status_code=401)

    assert normalize_error(original, "p") is original
    assert isinstance(normalize_error(httpx.ReadTimeout("slow", request=request), "p"), TimeoutExceededError)
    assert isinstance(normalize_error(httpx.ConnectError("refused", request=request), "p"), TransientNetworkError)

    wrapped = normalize_error(RuntimeError("boom"), "p")
    assert isinstance(wrapped, ProviderError)
    assert wrapped.to_dict() == {"code": "PROVIDER_ERROR", "message": "p error: boom", "status_code": None}
