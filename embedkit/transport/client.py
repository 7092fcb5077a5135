"""HTTP client wrapper shared by REST-based providers."""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import httpx
import structlog

from ..common.errors import (
    EmbedkitError,
    InvalidInputError,
    ProviderError,
    error_from_status,
    normalize_error,
    parse_error_body,
)
from ..resilience import CancellationToken, ResilienceConfig, ResilienceState, with_resilience
from ..resilience.timeout import DEFAULT_TIMEOUT_MS
from .url_safety import UrlSecurityOptions, validate_url, validate_url_with_dns

logger = structlog.get_logger("http_client")

ErrorMapper = Callable[[Any], str]

DEFAULT_HEADERS = {"Content-Type": "application/json"}


@dataclass
class HttpResult:
    data: Any
    status: int
    headers: httpx.Headers


def create_headers(api_key: Optional[str] = None, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """Standard JSON headers with an optional bearer token."""
    headers = dict(DEFAULT_HEADERS)
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"
    if extra:
        headers.update(extra)
    return headers


class ResilientHttpClient:
    """POST JSON to a validated endpoint and map failures to embedkit errors.

    When ``resilience`` is given, each request runs behind its own breaker,
    limiter, semaphore, timeout and retry. Without it a request is a single
    attempt bounded by ``timeout_ms``; callers such as the pipeline then
    apply resilience around the whole provider call.
    """

    def __init__(
        self,
        base_url: str,
        headers: Optional[Dict[str, str]] = None,
        security: Optional[UrlSecurityOptions] = None,
        resilience: Optional[ResilienceConfig] = None,
        error_mapper: Optional[ErrorMapper] = None,
        timeout_ms: float = DEFAULT_TIMEOUT_MS,
        client: Optional[httpx.AsyncClient] = None,
        name: str = "http",
    ):
        self.base_url = base_url.rstrip("/")
        self.headers = {**DEFAULT_HEADERS, **(headers or {})}
        self.security = security or UrlSecurityOptions()
        self.resilience = resilience
        self.error_mapper = error_mapper
        self.timeout_ms = resilience.timeout_ms if resilience is not None else timeout_ms
        self.name = name

        self._client = client
        self._owns_client = client is None
        self._state: Optional[ResilienceState] = (
            resilience.build_state(name) if resilience is not None else None
        )

        validate_url(self.base_url, self.security)

    def get_resilience_state(self) -> Optional[ResilienceState]:
        """Resilience objects in use, for sharing across clients."""
        return self._state

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(follow_redirects=False)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "ResilientHttpClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def post_json(
        self,
        body: Any,
        url: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> HttpResult:
        """POST ``body`` as JSON and return the decoded response."""
        target = url or self.base_url
        await validate_url_with_dns(target, self.security)

        async def send(token: CancellationToken) -> HttpResult:
            return await self._send("POST", target, body, headers)

        if self.resilience is None:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            return await self._send("POST", target, body, headers)

        result, _ = await with_resilience(
            send,
            self.resilience,
            self._state,
            cancel_token=cancel_token,
            operation_name=f"{self.name}_request",
        )
        return result

    async def _send(
        self,
        method: str,
        url: str,
        body: Any,
        headers: Optional[Dict[str, str]],
    ) -> HttpResult:
        client = self._get_client()
        request_headers = {**self.headers, **(headers or {})}
        current = url

        for _ in range(self.security.max_redirects + 1):
            try:
                response = await client.request(
                    method,
                    current,
                    json=body if method != "GET" else None,
                    headers=request_headers,
                    timeout=self.timeout_ms / 1000,
                    follow_redirects=False,
                )
            except httpx.HTTPError as e:
                raise normalize_error(e, self.name)

            if response.is_redirect:
                location = response.headers.get("location", "")
                if not self.security.allow_redirects:
                    raise InvalidInputError(
                        f"Redirect not allowed: {response.status_code} -> {location}",
                        status_code=response.status_code
                    )
                current = str(response.url.join(location))
                await validate_url_with_dns(current, self.security)
                logger.debug("Following redirect", target=current, status=response.status_code)
                if response.status_code == 303:
                    method = "GET"
                continue

            if not response.is_success:
                raise self._error_from_response(response)

            try:
                data = response.json()
            except ValueError as e:
                raise ProviderError(f"{self.name} returned invalid JSON", status_code=response.status_code, cause=e)

            return HttpResult(data=data, status=response.status_code, headers=response.headers)

        raise ProviderError(f"Too many redirects (>{self.security.max_redirects}) for {url}")

    def _error_from_response(self, response: httpx.Response) -> EmbedkitError:
        message = None
        if self.error_mapper is not None:
            try:
                message = self.error_mapper(response.json())
            except ValueError:
                message = None
        if not message:
            message = parse_error_body(response)
        return error_from_status(response.status_code, self.name, message)
