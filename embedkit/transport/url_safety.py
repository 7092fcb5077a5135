"""SSRF protection for provider endpoints.

URLs are checked before any request: scheme, literal private addresses and,
optionally, every address the hostname resolves to. Redirect targets go
through the same checks before they are followed.
"""

import asyncio
import ipaddress
import re
import socket
from dataclasses import dataclass
from typing import List, Optional, Union

import httpx
import structlog

from ..common.errors import InvalidInputError, TransientNetworkError

logger = structlog.get_logger("url_safety")

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

# Hostnames that never need DNS to be recognised as local
LOCAL_HOSTNAME_PATTERN = re.compile(r"^(localhost|.+\.localhost|localhost\.localdomain)$", re.IGNORECASE)


@dataclass(frozen=True)
class UrlSecurityOptions:
    require_https: bool = True
    allow_private: bool = False
    resolve_dns: bool = True
    allow_redirects: bool = False
    max_redirects: int = 3


DEFAULT_SECURITY = UrlSecurityOptions()


def _is_private_ip(ip: IPAddress) -> bool:
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    return (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_reserved
        or ip.is_multicast
        or ip.is_unspecified
    )


def _parse_ip(host: str) -> Optional[IPAddress]:
    # Scoped IPv6 literals such as fe80::1%eth0 carry an interface suffix
    candidate = host.strip("[]").split("%", 1)[0]
    try:
        return ipaddress.ip_address(candidate)
    except ValueError:
        return None


def is_private_host(hostname: str) -> bool:
    """Return True for loopback, private, link-local or unspecified hosts."""
    host = hostname.strip().rstrip(".").lower()
    if not host:
        return False
    if LOCAL_HOSTNAME_PATTERN.match(host):
        return True
    ip = _parse_ip(host)
    return ip is not None and _is_private_ip(ip)


def validate_url(url: str, options: Optional[UrlSecurityOptions] = None) -> httpx.URL:
    """Validate scheme and literal host of ``url`` without touching the network."""
    options = options or DEFAULT_SECURITY

    try:
        parsed = httpx.URL(url)
    except (httpx.InvalidURL, TypeError) as e:
        raise InvalidInputError(f"Invalid URL: {url}", cause=e)

    if parsed.scheme not in ("http", "https") or not parsed.host:
        raise InvalidInputError(f"Invalid URL: {url}")

    if options.require_https and parsed.scheme != "https":
        raise InvalidInputError(f"HTTPS required. Got: {parsed.scheme}")

    if not options.allow_private and is_private_host(parsed.host):
        raise InvalidInputError(f"Private/internal addresses not allowed: {parsed.host}")

    return parsed


async def resolve_host(host: str, port: Optional[int] = None) -> List[str]:
    """Resolve ``host`` through the running loop's resolver."""
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(host, port, type=socket.SOCK_STREAM)
    return [info[4][0] for info in infos]


async def validate_url_with_dns(url: str, options: Optional[UrlSecurityOptions] = None) -> httpx.URL:
    """Validate ``url`` and every address its hostname resolves to.

    Resolution failures are transient; a private address in the answer is an
    input error.
    """
    options = options or DEFAULT_SECURITY
    parsed = validate_url(url, options)

    if not options.resolve_dns or options.allow_private:
        return parsed

    host = parsed.host
    if _parse_ip(host) is not None:
        return parsed

    try:
        addresses = await resolve_host(host, parsed.port)
    except (socket.gaierror, OSError) as e:
        raise TransientNetworkError(f"Failed to resolve hostname: {host} ({e})", cause=e)

    for address in addresses:
        if is_private_host(address):
            logger.warning("DNS resolved to private address", host=host, address=address)
            raise InvalidInputError(f"DNS resolved to private address: {host} -> {address}")

    return parsed
