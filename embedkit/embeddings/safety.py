"""PII redaction applied before text leaves the process.

Redaction runs before cache-key generation and before any provider call, so
neither the cache nor the provider ever sees the raw values.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Pattern, Tuple, Union

import structlog

from .types import PiiRedactionConfig

logger = structlog.get_logger("pii_redaction")

REDACTED = "[REDACTED]"

DEFAULT_MAX_SCAN_LENGTH = 100000

EMAIL_PATTERN = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Z|a-z]{2,}\b")

# +1-234-567-8901, (234) 567-8901, 234.567.8901, 234-567-8901
PHONE_PATTERN = re.compile(r"(?:\+?1[-.\s]?)?\(?[0-9]{3}\)?[-.\s]?[0-9]{3}[-.\s]?[0-9]{4}\b")

# Visa, MasterCard, Amex, Discover, grouped 4x4, or any 13-19 digit run
CREDIT_CARD_PATTERN = re.compile(
    r"\b(?:4[0-9]{12}(?:[0-9]{3})?|5[1-5][0-9]{14}|3[47][0-9]{13}|6(?:011|5[0-9]{2})[0-9]{12}"
    r"|(?:[0-9]{4}[-\s]){3}[0-9]{4}|[0-9]{13,19})\b"
)

SSN_PATTERN = re.compile(r"\b[0-9]{3}-[0-9]{2}-[0-9]{4}\b")

_OCTET = r"(?:25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)"
IPV4_PATTERN = re.compile(rf"\b{_OCTET}\.{_OCTET}\.{_OCTET}\.{_OCTET}\b")

PatternLike = Union[str, Pattern[str]]


@dataclass(frozen=True)
class RedactionResult:
    text: str
    redacted: bool
    redaction_count: int
    counts_by_type: Dict[str, int] = field(default_factory=dict)


def _compile(pattern: PatternLike) -> Pattern[str]:
    return pattern if isinstance(pattern, re.Pattern) else re.compile(pattern)


def _build_patterns(
    email: bool,
    phone: bool,
    credit_card: bool,
    ssn: bool,
    ip_address: bool,
    custom_patterns: Iterable[PatternLike],
) -> List[Tuple[str, Pattern[str]]]:
    patterns: List[Tuple[str, Pattern[str]]] = []
    # Credit cards go first: the phone pattern matches 10-digit runs inside card numbers
    if credit_card:
        patterns.append(("credit_card", CREDIT_CARD_PATTERN))
    if email:
        patterns.append(("email", EMAIL_PATTERN))
    if phone:
        patterns.append(("phone", PHONE_PATTERN))
    if ssn:
        patterns.append(("ssn", SSN_PATTERN))
    if ip_address:
        patterns.append(("ip_address", IPV4_PATTERN))
    for i, pattern in enumerate(custom_patterns):
        patterns.append((f"custom_{i}", _compile(pattern)))
    return patterns


class PiiRedactor:
    """Callable applying the configured PII families in a fixed order.

    Only the first ``max_scan_length`` characters are scanned; the rest is
    appended untouched. Redacting twice yields the same text as once.
    """

    def __init__(self, config: PiiRedactionConfig, max_scan_length: int = DEFAULT_MAX_SCAN_LENGTH):
        self.config = config
        self.max_scan_length = max_scan_length
        self.patterns = _build_patterns(
            config.email,
            config.phone,
            config.credit_card,
            config.ssn,
            config.ip_address,
            config.custom_patterns,
        )

    def __call__(self, text: str) -> RedactionResult:
        head, tail = text[:self.max_scan_length], text[self.max_scan_length:]
        counts: Dict[str, int] = {}

        for name, pattern in self.patterns:
            head, count = pattern.subn(REDACTED, head)
            if count:
                counts[name] = counts.get(name, 0) + count

        total = sum(counts.values())
        if total:
            logger.debug("Redacted PII", redaction_count=total, types=sorted(counts))

        return RedactionResult(
            text=head + tail,
            redacted=total > 0,
            redaction_count=total,
            counts_by_type=counts,
        )


def create_pii_redactor(
    config: PiiRedactionConfig,
    max_scan_length: int = DEFAULT_MAX_SCAN_LENGTH
) -> PiiRedactor:
    return PiiRedactor(config, max_scan_length=max_scan_length)


def redact(text: str, config: PiiRedactionConfig) -> RedactionResult:
    return PiiRedactor(config)(text)


def redact_pii(text: str) -> RedactionResult:
    """Redact every built-in PII family."""
    return PiiRedactor(PiiRedactionConfig.all())(text)


def contains_pii(
    text: str,
    email: bool = True,
    phone: bool = True,
    credit_card: bool = True,
    ssn: bool = True,
    ip_address: bool = True,
    custom_patterns: Optional[Iterable[PatternLike]] = None,
) -> bool:
    """Check whether ``text`` contains any enabled PII family."""
    patterns = _build_patterns(email, phone, credit_card, ssn, ip_address, custom_patterns or ())
    return any(pattern.search(text) for _, pattern in patterns)
