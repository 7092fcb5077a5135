"""Token-bounded text chunking with overlap."""

import math
import re
from dataclasses import dataclass
from typing import Callable, List, Optional

from ..common.errors import ConfigurationError
from .types import DEFAULT_CHUNK_SIZE, ChunkingConfig, TextChunk, Tokenizer

CHARS_PER_TOKEN = 4

# Break points are searched within this fraction of the window around the target
BREAK_SEARCH_FRACTION = 0.2

_WHITESPACE = re.compile(r"\s+")
_SENTENCE_END = re.compile(r"[.!?]\s+")


@dataclass(frozen=True)
class ChunkingStats:
    input_length: int
    estimated_tokens: int
    estimated_chunks: int
    will_truncate: bool


def heuristic_token_count(text: str) -> int:
    """Approximate tokens as four characters each."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def create_tokenizer(tokenizer: Optional[Tokenizer] = None) -> Callable[[str], int]:
    """Resolve a tokenizer setting to a counting function.

    ``"tiktoken"`` is accepted but counts with the heuristic; pass a callable
    wrapping a real encoder for exact counts.
    """
    if tokenizer is None or tokenizer in ("heuristic", "tiktoken"):
        return heuristic_token_count
    if callable(tokenizer):
        return tokenizer
    raise ConfigurationError(f"Unknown tokenizer: {tokenizer!r}")


def normalize_whitespace(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


def _find_break_point(text: str, start: int, target: int, window: int) -> int:
    """Pick a chunk end at or before ``target``, after ``start``.

    Sentence ends are preferred, then the last space; otherwise ``target``.
    """
    search_start = max(start + 1, target - int(window * BREAK_SEARCH_FRACTION))

    last_sentence_end = -1
    for match in _SENTENCE_END.finditer(text, search_start, target + 1):
        if match.end() <= target:
            last_sentence_end = match.end()
    if last_sentence_end > start:
        return last_sentence_end

    space = text.rfind(" ", search_start, target)
    if space != -1 and space + 1 > start:
        return space + 1

    return target


def chunk_text(text: str, config: Optional[ChunkingConfig] = None) -> List[TextChunk]:
    """Split ``text`` into overlapping chunks of roughly ``config.size`` tokens.

    The text is truncated to ``max_input_length`` and whitespace is collapsed
    first. ``start_index``/``end_index`` refer to the collapsed text; consecutive
    spans never leave a gap, and each chunk's text is its span stripped.
    """
    config = config or ChunkingConfig()
    size = config.size
    overlap = min(config.overlap, size - 1)
    count_tokens = create_tokenizer(config.tokenizer)

    normalized = normalize_whitespace(text[:config.max_input_length])
    if not normalized:
        return []

    total_tokens = count_tokens(normalized)
    if total_tokens <= size:
        return [TextChunk(normalized, 0, len(normalized), total_tokens)]

    window = size * CHARS_PER_TOKEN
    overlap_chars = overlap * CHARS_PER_TOKEN
    length = len(normalized)

    chunks: List[TextChunk] = []
    start = 0
    while start < length:
        target = min(start + window, length)
        end = _find_break_point(normalized, start, target, window) if target < length else target

        piece = normalized[start:end].strip()
        if piece:
            chunks.append(TextChunk(piece, start, end, count_tokens(piece)))

        if end >= length:
            break

        next_start = max(end - overlap_chars, start + 1)
        # Begin the overlap on a word boundary when one is close
        space = normalized.find(" ", next_start, min(next_start + overlap_chars, end))
        if space != -1:
            next_start = space + 1
        start = next_start

    return chunks


def estimate_tokens(text: str, tokenizer: Optional[Tokenizer] = None) -> int:
    return create_tokenizer(tokenizer)(text)


def needs_chunking(
    text: str,
    max_tokens: int = DEFAULT_CHUNK_SIZE,
    tokenizer: Optional[Tokenizer] = None
) -> bool:
    return create_tokenizer(tokenizer)(text) > max_tokens


def get_chunking_stats(text: str, config: Optional[ChunkingConfig] = None) -> ChunkingStats:
    """Estimate how ``chunk_text`` would treat ``text`` without chunking it."""
    config = config or ChunkingConfig()
    overlap = min(config.overlap, config.size - 1)
    will_truncate = len(text) > config.max_input_length
    normalized = normalize_whitespace(text[:config.max_input_length])
    tokens = create_tokenizer(config.tokenizer)(normalized)

    estimated_chunks = 1
    if tokens > config.size:
        estimated_chunks = math.ceil((tokens - overlap) / (config.size - overlap))

    return ChunkingStats(
        input_length=len(text),
        estimated_tokens=tokens,
        estimated_chunks=estimated_chunks,
        will_truncate=will_truncate,
    )
