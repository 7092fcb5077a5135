"""Embedding pipeline: input selection through caching and metrics.

A call never raises for provider, network or content problems; those become
an ``EmbeddingSkipped`` result with a reason. ``ConfigurationError`` and task
cancellation propagate.
"""

import asyncio
import time
from dataclasses import replace
from typing import Any, Dict, List, Optional, Tuple

import structlog

from ..common.errors import (
    CancelledError,
    ConfigurationError,
    DimensionMismatchError,
    EmbeddingValidationError,
    EmbedkitError,
    InvalidInputError,
)
from ..common.logging import log_performance
from ..resilience import CancellationToken, with_resilience
from .aggregation import aggregate_vectors, get_dimensions
from .cache import (
    CacheKeyParams,
    generate_cache_key,
    generate_checksum,
    get_default_cache,
    validate_cached_result,
)
from .chunking import chunk_text, estimate_tokens
from .input import Record, select_input, validate_input
from .providers import create_embedding_provider, get_provider_cache_key
from .safety import create_pii_redactor
from .types import (
    ChunkingConfig,
    EmbeddingMetrics,
    EmbeddingOptions,
    EmbeddingProvider,
    EmbeddingResult,
    EmbeddingSkipped,
    EmbeddingSource,
    EmbeddingSuccess,
    EmbeddingSuccessMultiple,
    EmbeddingSuccessSingle,
    EmbedRequest,
    EmbedResponse,
    InputConfig,
    PartialEmbeddingSource,
    TextChunk,
)

logger = structlog.get_logger("embedding_pipeline")


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 3)


def get_effective_model(options: EmbeddingOptions) -> Optional[str]:
    """Explicit model first, then the HTTP config's model, then the provider's own default."""
    if options.model:
        return options.model
    if options.provider.type == "http":
        return options.provider.http_config.model
    return options.provider.provider.model_name


def apply_max_tokens_to_chunking(chunking: ChunkingConfig, max_tokens: Optional[int]) -> ChunkingConfig:
    """Clamp chunk size to ``max_tokens`` and keep overlap below the size."""
    if not max_tokens or max_tokens <= 0:
        return chunking
    size = min(chunking.size, max_tokens)
    overlap = min(chunking.overlap, max(0, size - 1))
    if size == chunking.size and overlap == chunking.overlap:
        return chunking
    return replace(chunking, size=size, overlap=overlap)


def _skipped(options: EmbeddingOptions, code: str, reason: str, **source: Any) -> EmbeddingSkipped:
    """Build a skipped result and report it to ``on_skipped`` under a short ``code``."""
    result = EmbeddingSkipped(reason=reason or "Embedding failed", source=PartialEmbeddingSource(**source))
    if options.on_skipped is not None:
        try:
            options.on_skipped(code, result)
        except Exception as e:
            logger.warning("Skip hook failed", error=str(e), code=code)
    return result


def _emit_metrics(options: EmbeddingOptions, metrics: EmbeddingMetrics) -> None:
    if options.on_metrics is None:
        return
    try:
        options.on_metrics(metrics)
    except Exception as e:
        logger.warning("Metrics hook failed", error=str(e))


async def _gather_in_order(coros: List[Any]) -> List[Any]:
    """Await all coroutines; on the first failure cancel the rest and re-raise."""
    tasks = [asyncio.ensure_future(coro) for coro in coros]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


class _ChunkEmbedder:
    """Embeds the chunks of one call and tracks retries."""

    def __init__(
        self,
        provider: EmbeddingProvider,
        options: EmbeddingOptions,
        model: Optional[str],
        callback_chunks: Optional[List[TextChunk]],
    ):
        self.provider = provider
        self.options = options
        self.model = model
        self.callback_chunks = callback_chunks
        self.state = options.resilience.build_state(name=provider.name)
        self.retries = 0

    def _on_retry(self, attempt: int, error: BaseException, delay_ms: float) -> None:
        self.retries += 1

    async def embed_chunk(self, index: int, chunk: TextChunk) -> Tuple[int, EmbedResponse]:
        async def call(token: CancellationToken) -> EmbedResponse:
            request = EmbedRequest(
                model=self.model,
                dimensions=self.options.output.dimensions,
                cancel_token=token,
            )
            return await self.provider.embed([chunk.text], request)

        response, _ = await with_resilience(
            call,
            self.options.resilience,
            self.state,
            on_retry=self._on_retry,
            cancel_token=self.options.cancel_token,
            operation_name=f"{self.provider.name}_chunk_{index}",
        )
        if len(response.embeddings) != 1:
            raise EmbeddingValidationError(
                f"Embedding count mismatch: expected 1, got {len(response.embeddings)}"
            )

        if self.options.on_chunk is not None:
            self._notify_chunk(index, chunk, response.embeddings[0])

        return index, response

    def _notify_chunk(self, index: int, chunk: TextChunk, vector: List[float]) -> None:
        text = chunk.text
        if self.callback_chunks is not None and index < len(self.callback_chunks):
            text = self.callback_chunks[index].text
        try:
            self.options.on_chunk(text, vector)
        except Exception as e:
            logger.warning("Chunk hook failed", error=str(e), chunk_index=index)

    async def embed_all(self, chunks: List[TextChunk]) -> Dict[int, EmbedResponse]:
        results = await _gather_in_order([self.embed_chunk(i, chunk) for i, chunk in enumerate(chunks)])
        return dict(results)


async def generate_embeddings(data: Record, options: EmbeddingOptions) -> EmbeddingResult:
    """Embed the text selected from ``data``.

    Parameters
    - data: ``ScrapedData`` or a plain dict with the same fields
    - options: Provider, input, chunking, output, safety, cache and resilience settings

    Returns a success result (single vector or all vectors) or
    ``EmbeddingSkipped``. Providers built from an HTTP config are closed
    before returning; custom providers stay open and belong to the caller.
    """
    started = time.perf_counter()
    model = get_effective_model(options)

    try:
        provider = create_embedding_provider(options.provider)
    except InvalidInputError as e:
        raise ConfigurationError(f"Invalid provider configuration: {e.message}", cause=e)

    owns_provider = options.provider.type == "http"
    try:
        return await _generate(data, options, provider, model, started)
    finally:
        if owns_provider:
            await provider.aclose()


async def _generate(
    data: Record,
    options: EmbeddingOptions,
    provider: EmbeddingProvider,
    model: Optional[str],
    started: float,
) -> EmbeddingResult:
    chunk_count: Optional[int] = None

    try:
        validation = validate_input(select_input(data, options.input), options.safety.min_text_length)
        if not validation.valid:
            logger.info("Embedding skipped", reason=validation.reason, provider=provider.name)
            return _skipped(options, "invalid_input", validation.reason, model=model, latency_ms=_elapsed_ms(started))

        original_text = validation.text
        text = original_text
        pii_redacted = False
        if options.safety.pii_redaction is not None:
            redaction = create_pii_redactor(options.safety.pii_redaction)(text)
            text = redaction.text
            pii_redacted = redaction.redacted

        chunking = apply_max_tokens_to_chunking(options.chunking, options.safety.max_tokens)
        cache_key = generate_cache_key(CacheKeyParams(
            provider_key=get_provider_cache_key(options.provider),
            content=text,
            model=model,
            dimensions=options.output.dimensions,
            aggregation=options.output.aggregation,
            input=options.input,
            chunking=chunking,
            safety=options.safety,
            cache_key_salt=options.cache.cache_key_salt,
        ))
        cache = options.cache.store if options.cache.store is not None else get_default_cache()

        cached = await cache.get(cache_key)
        if cached is not None and cached.status == "success":
            if validate_cached_result(cached, options.output.dimensions):
                return _from_cache(cached, options, provider, model, text, pii_redacted, started)
            logger.info("Cached embedding has unexpected dimensions, ignoring", key=cache_key[:16])

        chunks = chunk_text(text, chunking)
        chunk_count = len(chunks)
        if not chunks:
            return _skipped(options, "no_content", "No content after chunking", model=model, latency_ms=_elapsed_ms(started))

        # Raw chunks are cut from the unredacted text with the same config.
        # Placeholders change lengths, so chunk boundaries can drift between
        # the two when more than one chunk is produced.
        callback_chunks = None
        if options.on_chunk is not None and options.safety.allow_sensitive_callbacks:
            callback_chunks = chunk_text(original_text, chunking)

        embedder = _ChunkEmbedder(provider, options, model, callback_chunks)
        responses = await embedder.embed_all(chunks)
        vectors = [responses[i].embeddings[0] for i in range(len(chunks))]

        aggregation = options.output.aggregation
        aggregated = aggregate_vectors(vectors, aggregation)
        expected = options.output.dimensions
        if expected is not None and aggregated.dimensions != expected:
            raise DimensionMismatchError(
                f"Provider returned {aggregated.dimensions} dimensions, expected {expected}"
            )

        tokens = 0
        for i, chunk in enumerate(chunks):
            usage = responses[i].usage
            tokens += usage.total_tokens if usage is not None else chunk.estimated_tokens

        source = EmbeddingSource(
            model=model,
            chunks=len(chunks),
            tokens=tokens or estimate_tokens(text),
            checksum=generate_checksum(text),
            cached=False,
            latency_ms=_elapsed_ms(started),
        )

        result: EmbeddingSuccess
        if aggregated.kind == "single":
            result = EmbeddingSuccessSingle(aggregation=aggregation, vector=aggregated.vector, source=source)
        else:
            result = EmbeddingSuccessMultiple(vectors=aggregated.vectors, source=source)

        await cache.set(cache_key, result, ttl_ms=options.cache.ttl_ms)

        _emit_metrics(options, EmbeddingMetrics(
            provider=provider.name,
            model=model,
            input_tokens=source.tokens,
            output_dimensions=aggregated.dimensions,
            chunks=len(chunks),
            latency_ms=source.latency_ms,
            cached=False,
            retries=embedder.retries,
            pii_redacted=pii_redacted,
        ))

        log_performance(
            "generate_embeddings",
            source.latency_ms,
            provider=provider.name,
            model=model,
            chunks=len(chunks),
            dimensions=aggregated.dimensions,
            retries=embedder.retries,
        )
        return result

    except ConfigurationError:
        raise
    except CancelledError:
        logger.info("Embedding cancelled", provider=provider.name)
        return _skipped(options, "cancelled", "cancelled", model=model, chunks=chunk_count, latency_ms=_elapsed_ms(started))
    except EmbedkitError as e:
        logger.warning("Embedding skipped", reason=e.message, code=e.code, provider=provider.name)
        return _skipped(options, e.code.lower(), e.message, model=model, chunks=chunk_count, latency_ms=_elapsed_ms(started))
    except Exception as e:
        logger.warning("Embedding failed", error=str(e), provider=provider.name, exc_info=True)
        return _skipped(
            options,
            "error",
            str(e) or e.__class__.__name__,
            model=model,
            chunks=chunk_count,
            latency_ms=_elapsed_ms(started),
        )


def _from_cache(
    cached: EmbeddingSuccess,
    options: EmbeddingOptions,
    provider: EmbeddingProvider,
    model: Optional[str],
    text: str,
    pii_redacted: bool,
    started: float,
) -> EmbeddingSuccess:
    vectors = cached.vectors if isinstance(cached, EmbeddingSuccessMultiple) else cached.vector
    latency_ms = _elapsed_ms(started)

    _emit_metrics(options, EmbeddingMetrics(
        provider=provider.name,
        model=model,
        input_tokens=estimate_tokens(text),
        output_dimensions=get_dimensions(vectors),
        chunks=cached.source.chunks,
        latency_ms=latency_ms,
        cached=True,
        retries=0,
        pii_redacted=pii_redacted,
    ))
    logger.debug("Embedding cache hit", provider=provider.name, model=model)

    return cached.model_copy(update={"source": cached.source.model_copy(update={"cached": True})})


async def embed(text: str, options: EmbeddingOptions) -> EmbeddingResult:
    """Embed arbitrary text, ignoring any configured input selection."""
    return await generate_embeddings(
        {"text_content": text},
        replace(options, input=InputConfig(type="text_content")),
    )


async def embed_from_record(data: Record, options: EmbeddingOptions) -> EmbeddingResult:
    """Embed an already scraped record."""
    return await generate_embeddings(data, options)
