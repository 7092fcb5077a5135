"""Error taxonomy for embedding providers and the pipeline.

Every error raised by embedkit derives from ``EmbedkitError`` and carries a
stable ``code`` so callers can branch without string matching.

Taxonomy
- ``InvalidInputError``: bad URL or unusable input; surfaced immediately
- ``TransientNetworkError``: timeouts, resets, 408/429/5xx; retried per policy
- ``CircuitOpenError``: fast-fail while the breaker is open; never retried
- ``AuthError`` / ``EmbeddingValidationError``: 401/403, malformed responses,
  dimension mismatches; never retried
- ``ConfigurationError``: caller programming error; the only error the
  pipeline lets escape
"""

import json
from typing import Optional

import httpx


class EmbedkitError(Exception):
    """Base error for the embedding pipeline."""

    code = "EMBEDKIT_ERROR"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        cause: Optional[BaseException] = None
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.cause = cause

    def to_dict(self) -> dict:
        """Serialize error details for logs and diagnostics."""
        return {
            "code": self.code,
            "message": self.message,
            "status_code": self.status_code,
        }


class InvalidInputError(EmbedkitError):
    """Input rejected before any network work (bad URL, empty text)."""

    code = "INVALID_INPUT"


class ConfigurationError(EmbedkitError):
    """Required configuration is missing or inconsistent."""

    code = "CONFIGURATION_ERROR"


class TransientNetworkError(EmbedkitError):
    """Transient failure that the retry policy may recover from."""

    code = "TRANSIENT_NETWORK"


class TimeoutExceededError(TransientNetworkError):
    """A single attempt exceeded its time budget and was abandoned."""

    code = "TIMEOUT"


class CircuitOpenError(EmbedkitError):
    """Circuit breaker is open; the call was rejected without a network attempt."""

    code = "CIRCUIT_OPEN"


class CancelledError(EmbedkitError):
    """The caller cancelled the operation through a cancellation token."""

    code = "CANCELLED"


class AuthOrValidationError(EmbedkitError):
    """Non-retryable failure: credentials or response shape are wrong."""

    code = "AUTH_OR_VALIDATION"


class AuthError(AuthOrValidationError):
    """Provider rejected the credentials (401/403)."""

    code = "AUTH"


class EmbeddingValidationError(AuthOrValidationError):
    """Provider returned a malformed or inconsistent response."""

    code = "VALIDATION"


class DimensionMismatchError(EmbeddingValidationError):
    """Vectors of one request do not share a dimensionality."""

    code = "DIMENSION_MISMATCH"


class ProviderError(EmbedkitError):
    """Provider failure that is neither transient nor an auth problem."""

    code = "PROVIDER_ERROR"


_TRANSIENT_STATUSES = frozenset({408, 429, 500, 502, 503, 504})


def error_from_status(status: int, provider_name: str, message: str) -> EmbedkitError:
    """Map an HTTP status code to the matching error class."""
    text = f"{provider_name} API error ({status}): {message}"

    if status in (401, 403):
        return AuthError(text, status_code=status)
    if status in _TRANSIENT_STATUSES or status >= 500:
        return TransientNetworkError(text, status_code=status)
    return ProviderError(text, status_code=status)


def parse_error_body(response: httpx.Response) -> str:
    """Extract a human-readable message from an error response body."""
    try:
        text = response.text
    except (httpx.ResponseNotRead, UnicodeDecodeError):
        return f"HTTP {response.status_code} {response.reason_phrase}"

    try:
        payload = json.loads(text)
    except ValueError:
        return text or f"HTTP {response.status_code} {response.reason_phrase}"

    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            return str(error.get("message") or error.get("msg") or json.dumps(error))
        if isinstance(error, str):
            return error
        for key in ("message", "detail"):
            if isinstance(payload.get(key), str):
                return payload[key]
    return text


def normalize_error(error: BaseException, provider_name: str) -> EmbedkitError:
    """Wrap an arbitrary exception in the embedkit taxonomy.

    ``EmbedkitError`` instances pass through unchanged so status codes and
    classification survive multiple layers of wrapping.
    """
    if isinstance(error, EmbedkitError):
        return error

    if isinstance(error, (httpx.TimeoutException, TimeoutError)):
        return TimeoutExceededError(f"{provider_name} request timed out", cause=error)

    if isinstance(error, (httpx.TransportError, ConnectionError)):
        return TransientNetworkError(
            f"{provider_name} connection failed: {error}",
            cause=error
        )

    return ProviderError(f"{provider_name} error: {error}", cause=error)
