"""Content-addressable embedding cache.

Keys hash the provider identity, the options that change the vector and the
post-redaction text. The caller's URL or record identity is never part of a
key, so identical content from different sources shares one entry.
"""

import hashlib
import json
import math
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import redis.asyncio as redis
import structlog
from pydantic import ValidationError
from redis.exceptions import RedisError

from .types import (
    Aggregation,
    ChunkingConfig,
    EmbeddingResult,
    EmbeddingResultAdapter,
    EmbeddingSuccessMultiple,
    EmbeddingSuccessSingle,
    InputConfig,
    PiiRedactionConfig,
    SafetyConfig,
)

logger = structlog.get_logger("embedding_cache")

DEFAULT_MAX_ENTRIES = 1000
DEFAULT_TTL_MS = 60 * 60 * 1000


# Keys ---------------------------------------------------------------------

@dataclass(frozen=True)
class CacheKeyParams:
    provider_key: str
    content: str
    model: Optional[str] = None
    dimensions: Optional[int] = None
    aggregation: Optional[Aggregation] = None
    input: Optional[InputConfig] = None
    chunking: Optional[ChunkingConfig] = None
    safety: Optional[SafetyConfig] = None
    cache_key_salt: Optional[str] = None


def _drop_none(value: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in value.items() if v is not None}


def _tokenizer_id(tokenizer: Any) -> str:
    if tokenizer is None or tokenizer == "heuristic":
        return "heuristic"
    if tokenizer == "tiktoken":
        return "tiktoken"
    return "custom"


def _serialize_input(config: Optional[InputConfig]) -> Optional[Dict[str, Any]]:
    if config is None:
        return None
    return {
        "type": config.type,
        "has_transform": config.transform is not None,
        "has_custom_text": bool(config.custom_text),
    }


def _serialize_chunking(config: Optional[ChunkingConfig]) -> Optional[Dict[str, Any]]:
    if config is None:
        return None
    return {
        "size": config.size,
        "overlap": config.overlap,
        "tokenizer": _tokenizer_id(config.tokenizer),
        "max_input_length": config.max_input_length,
    }


def _serialize_pii(config: Optional[PiiRedactionConfig]) -> Optional[Dict[str, Any]]:
    if config is None:
        return None
    patterns = [
        p if isinstance(p, str) else f"{p.pattern}/{p.flags}"
        for p in config.custom_patterns
    ]
    return {
        "email": config.email,
        "phone": config.phone,
        "credit_card": config.credit_card,
        "ssn": config.ssn,
        "ip_address": config.ip_address,
        "custom_patterns": patterns or None,
    }


def _serialize_safety(config: Optional[SafetyConfig]) -> Optional[Dict[str, Any]]:
    if config is None:
        return None
    return _drop_none({
        "pii_redaction": _drop_none(_serialize_pii(config.pii_redaction) or {}) or None,
        "min_text_length": config.min_text_length,
        "max_tokens": config.max_tokens,
    })


def generate_cache_key(params: CacheKeyParams) -> str:
    """Deterministic sha256 key over configuration fingerprint and content."""
    fingerprint = _drop_none({
        "provider_key": params.provider_key,
        "model": params.model or "provider-default",
        "dimensions": params.dimensions if params.dimensions is not None else "default",
        "aggregation": params.aggregation or "average",
        "input": _serialize_input(params.input),
        "chunking": _serialize_chunking(params.chunking),
        "safety": _serialize_safety(params.safety),
        "cache_key_salt": params.cache_key_salt,
    })

    digest = hashlib.sha256()
    digest.update(json.dumps(fingerprint, sort_keys=True, separators=(",", ":")).encode("utf-8"))
    digest.update(b"\0")
    digest.update(params.content.encode("utf-8"))
    return digest.hexdigest()


def generate_checksum(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()[:16]


def validate_cached_result(result: EmbeddingResult, expected_dimensions: Optional[int] = None) -> bool:
    """Check a cached result against the dimensionality the caller expects."""
    if expected_dimensions is None:
        return True
    if isinstance(result, EmbeddingSuccessMultiple):
        return bool(result.vectors) and len(result.vectors[0]) == expected_dimensions
    if isinstance(result, EmbeddingSuccessSingle):
        return len(result.vector) == expected_dimensions
    return True


# Stores -------------------------------------------------------------------

class EmbeddingCache(ABC):
    """Store contract used by the pipeline."""

    @abstractmethod
    async def get(self, key: str) -> Optional[EmbeddingResult]:
        ...

    @abstractmethod
    async def set(self, key: str, value: EmbeddingResult, ttl_ms: Optional[float] = None) -> None:
        ...

    @abstractmethod
    async def delete(self, key: str) -> bool:
        ...

    @abstractmethod
    async def clear(self) -> None:
        ...


@dataclass
class CacheEntry:
    value: EmbeddingResult
    created_at: float
    expires_at: float
    accessed_at: float


@dataclass(frozen=True)
class CacheStats:
    size: int
    max_entries: int
    expired: int
    utilization: float


class InMemoryEmbeddingCache(EmbeddingCache):
    """Process-local cache with per-entry TTL and LRU eviction.

    Expired entries are dropped lazily on read. When a write finds the cache
    full, expired entries are purged first and the least recently used entry
    is evicted only if that freed nothing.
    """

    def __init__(
        self,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        ttl_ms: float = DEFAULT_TTL_MS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_entries = max_entries
        self.default_ttl_ms = ttl_ms
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, key: str) -> Optional[EmbeddingResult]:
        entry = self._entries.get(key)
        if entry is None:
            return None

        now = self._clock()
        if now > entry.expires_at:
            del self._entries[key]
            return None

        entry.accessed_at = now
        self._entries.move_to_end(key)
        return entry.value

    async def set(self, key: str, value: EmbeddingResult, ttl_ms: Optional[float] = None) -> None:
        now = self._clock()
        ttl = ttl_ms if ttl_ms is not None else self.default_ttl_ms

        if key not in self._entries and len(self._entries) >= self.max_entries:
            if self.cleanup() == 0:
                self._evict_lru()

        self._entries[key] = CacheEntry(
            value=value,
            created_at=now,
            expires_at=now + ttl / 1000,
            accessed_at=now,
        )
        self._entries.move_to_end(key)

    async def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    async def clear(self) -> None:
        self._entries.clear()

    def get_stats(self) -> CacheStats:
        now = self._clock()
        expired = sum(1 for entry in self._entries.values() if now > entry.expires_at)
        return CacheStats(
            size=len(self._entries),
            max_entries=self.max_entries,
            expired=expired,
            utilization=len(self._entries) / self.max_entries if self.max_entries else 0.0,
        )

    def cleanup(self) -> int:
        """Drop expired entries and return how many were removed."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if now > entry.expires_at]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def _evict_lru(self) -> None:
        if self._entries:
            key, _ = self._entries.popitem(last=False)
            logger.debug("Evicted least recently used entry", key=key[:16])


class NoOpEmbeddingCache(EmbeddingCache):
    """Cache that stores nothing."""

    async def get(self, key: str) -> Optional[EmbeddingResult]:
        return None

    async def set(self, key: str, value: EmbeddingResult, ttl_ms: Optional[float] = None) -> None:
        return None

    async def delete(self, key: str) -> bool:
        return False

    async def clear(self) -> None:
        return None


class RedisEmbeddingCache(EmbeddingCache):
    """Durable cache backed by Redis.

    Results are stored as JSON under ``prefix + key`` with ``SETEX``. Redis
    failures are logged and treated as misses so a cache outage never fails
    an embedding call.
    """

    def __init__(
        self,
        client: Optional[redis.Redis] = None,
        redis_url: Optional[str] = None,
        ttl_ms: float = DEFAULT_TTL_MS,
        prefix: str = "embedkit:embedding:",
    ):
        if client is None:
            if redis_url is None:
                raise ValueError("RedisEmbeddingCache needs a client or a redis_url")
            client = redis.from_url(redis_url)
        self.redis_client = client
        self.default_ttl_ms = ttl_ms
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def get(self, key: str) -> Optional[EmbeddingResult]:
        try:
            cached_data = await self.redis_client.get(self._key(key))
        except RedisError as e:
            logger.warning("Failed to read cached embedding", error=str(e))
            return None

        if not cached_data:
            return None

        try:
            return EmbeddingResultAdapter.validate_json(cached_data)
        except ValidationError as e:
            logger.warning("Discarding unreadable cached embedding", error=str(e))
            return None

    async def set(self, key: str, value: EmbeddingResult, ttl_ms: Optional[float] = None) -> None:
        ttl = ttl_ms if ttl_ms is not None else self.default_ttl_ms
        ttl_seconds = max(1, math.ceil(ttl / 1000))
        try:
            await self.redis_client.setex(self._key(key), ttl_seconds, value.model_dump_json())
        except RedisError as e:
            logger.warning("Failed to cache embedding", error=str(e))

    async def delete(self, key: str) -> bool:
        try:
            return bool(await self.redis_client.delete(self._key(key)))
        except RedisError as e:
            logger.warning("Failed to delete cached embedding", error=str(e))
            return False

    async def clear(self) -> None:
        try:
            keys = [k async for k in self.redis_client.scan_iter(match=f"{self.prefix}*")]
            if keys:
                await self.redis_client.delete(*keys)
        except RedisError as e:
            logger.warning("Failed to clear embedding cache", error=str(e))

    async def close(self) -> None:
        await self.redis_client.aclose()


_default_cache: Optional[InMemoryEmbeddingCache] = None


def get_default_cache() -> InMemoryEmbeddingCache:
    """Process-wide in-memory cache used when no store is configured."""
    global _default_cache
    if _default_cache is None:
        _default_cache = InMemoryEmbeddingCache()
    return _default_cache


def reset_default_cache() -> None:
    global _default_cache
    if _default_cache is not None:
        _default_cache._entries.clear()
    _default_cache = None
