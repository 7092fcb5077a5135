"""Data model for the embedding pipeline.

Configuration objects are frozen dataclasses; anything that crosses the
process boundary (results, scraped records) is a pydantic model so it can be
cached, logged and serialized as JSON.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import (
    TYPE_CHECKING,
    Annotated,
    Any,
    Callable,
    Dict,
    List,
    Literal,
    Optional,
    Pattern,
    Tuple,
    Union,
)

import httpx
from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag, TypeAdapter

from ..common.errors import ConfigurationError
from ..resilience import CancellationToken, ResilienceConfig
from ..resilience.timeout import DEFAULT_TIMEOUT_MS

if TYPE_CHECKING:
    from .cache import EmbeddingCache

EmbeddingVector = List[float]
Aggregation = Literal["average", "max", "first", "all"]
InputType = Literal["text_content", "title+summary", "custom"]
Tokenizer = Union[str, Callable[[str], int]]

AGGREGATIONS = ("average", "max", "first", "all")
INPUT_TYPES = ("text_content", "title+summary", "custom")

DEFAULT_CHUNK_SIZE = 500
DEFAULT_CHUNK_OVERLAP = 50
DEFAULT_MAX_INPUT_LENGTH = 100000
DEFAULT_MAX_TOKENS = 8192
DEFAULT_MIN_TEXT_LENGTH = 10


# Records ------------------------------------------------------------------

class ScrapedData(BaseModel):
    """Extracted page content the pipeline can embed.

    Only the text fields are read; unknown fields are kept so callers can pass
    richer records through ``InputConfig.transform``.
    """

    model_config = ConfigDict(extra="allow")

    url: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    excerpt: Optional[str] = None
    summary: Optional[str] = None
    content: Optional[str] = None
    text_content: Optional[str] = None


@dataclass(frozen=True)
class TextChunk:
    text: str
    start_index: int
    end_index: int
    estimated_tokens: int


# Configuration ------------------------------------------------------------

@dataclass(frozen=True)
class InputConfig:
    """Where the text to embed comes from.

    ``transform`` wins over ``type``; ``custom_text`` is used for ``custom``.
    """

    type: InputType = "text_content"
    transform: Optional[Callable[[ScrapedData], str]] = None
    custom_text: Optional[str] = None

    def __post_init__(self):
        if self.type not in INPUT_TYPES:
            raise ConfigurationError(f"Unknown input type: {self.type}")


@dataclass(frozen=True)
class ChunkingConfig:
    size: int = DEFAULT_CHUNK_SIZE
    overlap: int = DEFAULT_CHUNK_OVERLAP
    tokenizer: Tokenizer = "heuristic"
    max_input_length: int = DEFAULT_MAX_INPUT_LENGTH

    def __post_init__(self):
        if self.size < 1:
            raise ConfigurationError("Chunk size must be at least 1 token")
        if self.overlap < 0:
            raise ConfigurationError("Chunk overlap must not be negative")
        if self.max_input_length < 1:
            raise ConfigurationError("max_input_length must be positive")


@dataclass(frozen=True)
class OutputConfig:
    aggregation: Aggregation = "average"
    dimensions: Optional[int] = None

    def __post_init__(self):
        if self.aggregation not in AGGREGATIONS:
            raise ConfigurationError(f"Unknown aggregation: {self.aggregation}")


@dataclass(frozen=True)
class PiiRedactionConfig:
    email: bool = False
    phone: bool = False
    credit_card: bool = False
    ssn: bool = False
    ip_address: bool = False
    custom_patterns: Tuple[Union[str, Pattern[str]], ...] = ()

    @classmethod
    def all(cls, custom_patterns: Tuple[Union[str, Pattern[str]], ...] = ()) -> "PiiRedactionConfig":
        return cls(
            email=True,
            phone=True,
            credit_card=True,
            ssn=True,
            ip_address=True,
            custom_patterns=custom_patterns,
        )


@dataclass(frozen=True)
class SafetyConfig:
    pii_redaction: Optional[PiiRedactionConfig] = None
    min_text_length: int = DEFAULT_MIN_TEXT_LENGTH
    max_tokens: int = DEFAULT_MAX_TOKENS
    allow_sensitive_callbacks: bool = False


@dataclass(frozen=True)
class CacheConfig:
    """Cache settings. ``store`` defaults to the process-wide in-memory cache."""

    store: Optional["EmbeddingCache"] = field(default=None, compare=False)
    ttl_ms: Optional[float] = None
    max_entries: Optional[int] = None
    cache_key_salt: Optional[str] = None


# Providers ----------------------------------------------------------------

@dataclass(frozen=True)
class Usage:
    prompt_tokens: int = 0
    total_tokens: int = 0


@dataclass(frozen=True)
class EmbedRequest:
    """Per-call options. ``model=None`` lets the provider use its default."""

    model: Optional[str] = None
    dimensions: Optional[int] = None
    cancel_token: Optional[CancellationToken] = None


@dataclass
class EmbedResponse:
    embeddings: List[EmbeddingVector]
    usage: Optional[Usage] = None


class EmbeddingProvider(ABC):
    """Capability every embedding backend implements.

    ``model_name`` is the model used when a request names none.
    ``cache_identity`` must differ between providers that can return
    different vectors for the same text; it defaults to ``name`` plus
    ``model_name``.
    """

    name: str = "provider"
    model_name: Optional[str] = None

    @property
    def cache_identity(self) -> str:
        if self.model_name:
            return f"{self.name}:{self.model_name}"
        return self.name

    @abstractmethod
    async def embed(self, texts: List[str], request: EmbedRequest) -> EmbedResponse:
        """Embed ``texts`` in order, one vector per text."""


@dataclass(frozen=True)
class HttpEmbeddingConfig:
    """Generic REST embedding endpoint.

    ``request_builder(texts, model)`` builds the JSON body (default
    ``{"input": texts, "model": model}``); ``response_mapper(payload)``
    extracts the vectors. ``resilience`` applies per HTTP request and is
    normally left unset because the pipeline wraps every provider call.
    """

    base_url: str
    model: str
    headers: Dict[str, str] = field(default_factory=dict)
    request_builder: Optional[Callable[[List[str], str], Any]] = None
    response_mapper: Optional[Callable[[Any], List[EmbeddingVector]]] = None
    error_mapper: Optional[Callable[[Any], str]] = None
    require_https: bool = True
    allow_private: bool = False
    resolve_dns: bool = True
    allow_redirects: bool = False
    resilience: Optional[ResilienceConfig] = None
    timeout_ms: float = DEFAULT_TIMEOUT_MS
    client: Optional[httpx.AsyncClient] = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class ProviderConfig:
    """Closed set of provider selections: ``http`` or ``custom``."""

    type: Literal["http", "custom"]
    http_config: Optional[HttpEmbeddingConfig] = None
    provider: Optional[EmbeddingProvider] = None

    def __post_init__(self):
        if self.type == "http" and self.http_config is None:
            raise ConfigurationError("HTTP provider requires an HttpEmbeddingConfig")
        if self.type == "custom" and self.provider is None:
            raise ConfigurationError("Custom provider requires an EmbeddingProvider instance")
        if self.type not in ("http", "custom"):
            raise ConfigurationError(f"Unknown provider type: {self.type}")

    @classmethod
    def http(cls, config: HttpEmbeddingConfig) -> "ProviderConfig":
        return cls(type="http", http_config=config)

    @classmethod
    def custom(cls, provider: EmbeddingProvider) -> "ProviderConfig":
        """Use an existing provider. The caller owns it and closes it (``aclose``) when done."""
        return cls(type="custom", provider=provider)


# Results ------------------------------------------------------------------

class EmbeddingSource(BaseModel):
    model: Optional[str] = None
    chunks: int
    tokens: int
    checksum: str
    cached: bool = False
    latency_ms: float


class PartialEmbeddingSource(BaseModel):
    model: Optional[str] = None
    chunks: Optional[int] = None
    tokens: Optional[int] = None
    checksum: Optional[str] = None
    cached: Optional[bool] = None
    latency_ms: Optional[float] = None


class EmbeddingSuccessSingle(BaseModel):
    status: Literal["success"] = "success"
    aggregation: Literal["average", "max", "first"]
    vector: EmbeddingVector
    source: EmbeddingSource


class EmbeddingSuccessMultiple(BaseModel):
    status: Literal["success"] = "success"
    aggregation: Literal["all"] = "all"
    vectors: List[EmbeddingVector]
    source: EmbeddingSource


class EmbeddingSkipped(BaseModel):
    status: Literal["skipped"] = "skipped"
    reason: str = Field(min_length=1)
    source: PartialEmbeddingSource = Field(default_factory=PartialEmbeddingSource)


def _result_tag(value: Any) -> str:
    if isinstance(value, dict):
        status, aggregation = value.get("status"), value.get("aggregation")
    else:
        status, aggregation = getattr(value, "status", None), getattr(value, "aggregation", None)
    if status == "skipped":
        return "skipped"
    return "multiple" if aggregation == "all" else "single"


EmbeddingResult = Annotated[
    Union[
        Annotated[EmbeddingSuccessSingle, Tag("single")],
        Annotated[EmbeddingSuccessMultiple, Tag("multiple")],
        Annotated[EmbeddingSkipped, Tag("skipped")],
    ],
    Discriminator(_result_tag),
]

EmbeddingResultAdapter: TypeAdapter = TypeAdapter(EmbeddingResult)

EmbeddingSuccess = Union[EmbeddingSuccessSingle, EmbeddingSuccessMultiple]


@dataclass(frozen=True)
class EmbeddingMetrics:
    provider: str
    model: Optional[str]
    input_tokens: int
    output_dimensions: int
    chunks: int
    latency_ms: float
    cached: bool
    retries: int
    pii_redacted: bool


# Request ------------------------------------------------------------------

@dataclass(frozen=True)
class EmbeddingOptions:
    """Everything one pipeline call needs. Immutable once built.

    Hooks never fail a call; their exceptions are logged.
    - on_chunk(text, vector): once per chunk. ``text`` is redacted unless
      ``safety.allow_sensitive_callbacks`` is set
    - on_metrics(metrics): once per successful or cached call
    - on_skipped(code, result): once per skipped call; ``code`` is short and
      stable (``invalid_input``, ``cancelled``, ``circuit_open``, ...)
    """

    provider: ProviderConfig
    model: Optional[str] = None
    input: InputConfig = field(default_factory=InputConfig)
    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    safety: SafetyConfig = field(default_factory=SafetyConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    resilience: ResilienceConfig = field(default_factory=ResilienceConfig)
    on_chunk: Optional[Callable[[str, EmbeddingVector], None]] = field(default=None, compare=False)
    on_metrics: Optional[Callable[[EmbeddingMetrics], None]] = field(default=None, compare=False)
    on_skipped: Optional[Callable[[str, EmbeddingSkipped], None]] = field(default=None, compare=False)
    cancel_token: Optional[CancellationToken] = field(default=None, compare=False)
