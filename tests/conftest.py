"""Shared fixtures and test doubles."""

from typing import Callable, List, Optional

import pytest

from embedkit.embeddings.cache import reset_default_cache
from embedkit.embeddings.types import EmbeddingProvider, EmbedRequest, EmbedResponse
from embedkit.resilience import ResilienceConfig, RetryConfig
from embedkit.transport import url_safety


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StaticProvider(EmbeddingProvider):
    """Provider returning a fixed vector, or one computed from the text.

    ``failures`` are raised one per call before any vector is returned.
    """

    name = "static"

    def __init__(
        self,
        vector: Optional[List[float]] = None,
        vector_for: Optional[Callable[[str], List[float]]] = None,
        failures: Optional[List[BaseException]] = None,
    ):
        self.vector = vector or [0.1, 0.2, 0.3]
        self.vector_for = vector_for
        self.failures = list(failures or [])
        self.calls: List[List[str]] = []
        self.requests: List[EmbedRequest] = []

    async def embed(self, texts: List[str], request: EmbedRequest) -> EmbedResponse:
        self.calls.append(list(texts))
        self.requests.append(request)
        if self.failures:
            raise self.failures.pop(0)
        if self.vector_for is not None:
            return EmbedResponse(embeddings=[self.vector_for(text) for text in texts])
        return EmbedResponse(embeddings=[list(self.vector) for _ in texts])


FAST_RESILIENCE = ResilienceConfig(
    retry=RetryConfig(max_attempts=3, backoff_ms=1),
    timeout_ms=2000,
)

SAMPLE_TEXT = (
    "Carbon markets let companies trade emission allowances. "
    "Prices respond to policy changes and energy demand."
)


@pytest.fixture(autouse=True)
def clean_default_cache():
    """Keep the process-wide cache from leaking between tests."""
    reset_default_cache()
    yield
    reset_default_cache()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def static_provider():
    return StaticProvider()


@pytest.fixture
def public_dns(monkeypatch):
    """Resolve every hostname to a public address."""
    resolved = []

    async def resolve(host, port=None):
        resolved.append(host)
        return ["93.184.216.34"]

    monkeypatch.setattr(url_safety, "resolve_host", resolve)
    return resolved
