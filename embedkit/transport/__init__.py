"""HTTP transport: SSRF-safe URL validation and a resilient JSON client."""

from .client import HttpResult, ResilientHttpClient, create_headers
from .url_safety import (
    UrlSecurityOptions,
    is_private_host,
    validate_url,
    validate_url_with_dns,
)

__all__ = [
    "HttpResult",
    "ResilientHttpClient",
    "UrlSecurityOptions",
    "create_headers",
    "is_private_host",
    "validate_url",
    "validate_url_with_dns",
]
