"""Selection and normalization of the text to embed from a scraped record."""

import re
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from .types import DEFAULT_MIN_TEXT_LENGTH, InputConfig, ScrapedData

MIN_WORD_COUNT = 3

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_HORIZONTAL_SPACE = re.compile(r"[ \t]+")
_EXTRA_NEWLINES = re.compile(r"\n{3,}")

# Applied in order; images before links so the leading "!" is consumed
_MARKDOWN_RULES = [
    (re.compile(r"```[\s\S]*?```"), ""),
    (re.compile(r"`[^`]+`"), ""),
    (re.compile(r"!\[([^\]]*)\]\([^)]+\)"), r"\1"),
    (re.compile(r"\[([^\]]+)\]\([^)]+\)"), r"\1"),
    (re.compile(r"^#{1,6}\s+", re.MULTILINE), ""),
    (re.compile(r"\*\*([^*]+)\*\*"), r"\1"),
    (re.compile(r"\*([^*]+)\*"), r"\1"),
    (re.compile(r"__([^_]+)__"), r"\1"),
    (re.compile(r"_([^_]+)_"), r"\1"),
    (re.compile(r"^>\s+", re.MULTILINE), ""),
    (re.compile(r"^[-*_]{3,}$", re.MULTILINE), ""),
    (re.compile(r"^[ \t]*[-*+]\s+", re.MULTILINE), ""),
    (re.compile(r"^[ \t]*\d+\.\s+", re.MULTILINE), ""),
]

Record = Union[ScrapedData, Dict[str, Any]]


@dataclass(frozen=True)
class InputValidation:
    valid: bool
    text: Optional[str] = None
    reason: Optional[str] = None
    word_count: int = 0
    char_count: int = 0


def _as_record(data: Record) -> ScrapedData:
    if isinstance(data, ScrapedData):
        return data
    return ScrapedData.model_validate(data)


def normalize_text(text: Optional[str]) -> str:
    """Strip control characters and tidy whitespace, keeping paragraph breaks."""
    if not text:
        return ""
    text = _CONTROL_CHARS.sub("", text)
    text = _HORIZONTAL_SPACE.sub(" ", text)
    text = _EXTRA_NEWLINES.sub("\n\n", text)
    return "\n".join(line.strip() for line in text.split("\n")).strip()


def strip_markdown(markdown: str) -> str:
    for pattern, replacement in _MARKDOWN_RULES:
        markdown = pattern.sub(replacement, markdown)
    return markdown


def _select_text_content(data: ScrapedData) -> Optional[str]:
    if data.text_content:
        return normalize_text(data.text_content)
    if data.content:
        return normalize_text(strip_markdown(data.content))
    if data.excerpt:
        return normalize_text(data.excerpt)
    if data.description:
        return normalize_text(data.description)
    return None


def _select_title_summary(data: ScrapedData) -> Optional[str]:
    parts = []
    if data.title:
        parts.append(data.title)
    summary = data.summary or data.excerpt or data.description
    if summary:
        parts.append(summary)
    if not parts:
        return None
    return normalize_text("\n\n".join(parts))


def select_input(data: Record, config: Optional[InputConfig] = None) -> Optional[str]:
    """Pick the text to embed from ``data`` according to ``config``.

    A ``transform`` always wins. ``custom`` without ``custom_text`` falls back
    to the text content chain.
    """
    config = config or InputConfig()
    record = _as_record(data)

    if config.transform is not None:
        return normalize_text(config.transform(record))

    if config.type == "custom" and config.custom_text:
        return normalize_text(config.custom_text)

    if config.type == "title+summary":
        return _select_title_summary(record)

    return _select_text_content(record)


def validate_input(text: Optional[str], min_length: int = DEFAULT_MIN_TEXT_LENGTH) -> InputValidation:
    """Reject missing, short or nearly word-free input."""
    if not text:
        return InputValidation(valid=False, reason="No input text available")

    if len(text) < min_length:
        return InputValidation(
            valid=False,
            reason=f"Input too short ({len(text)} < {min_length} characters)",
        )

    word_count = sum(1 for word in text.split() if len(word) > 1)
    if word_count < MIN_WORD_COUNT:
        return InputValidation(
            valid=False,
            reason=f"Input has too few words ({word_count} < {MIN_WORD_COUNT})",
        )

    return InputValidation(valid=True, text=text, word_count=word_count, char_count=len(text))


def preview_input(data: Record, config: Optional[InputConfig] = None, max_length: int = 200) -> str:
    text = select_input(data, config)
    if not text:
        return "[No input available]"
    if len(text) <= max_length:
        return text
    return f"{text[:max_length]}..."
