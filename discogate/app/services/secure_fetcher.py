"""SSRF-safe fetching of user-supplied image URLs.

A URL is fetched only after every stage below passes, in order:

1. httpx parses it and it has a host;
2. the scheme is ``https``;
3. the host is on a closed allowlist (exact match or dot-suffixed subdomain);
4. the host resolves;
5. no resolved address is private, loopback, link-local or otherwise
   ambiguous.

A failing stage raises immediately, so nothing touches the network before
the host has been approved.

The address check happens before the fetch re-resolves the name, so a DNS
answer that changes between the two (rebinding) is not caught here.
"""

import asyncio
import ipaddress
import socket
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Sequence

import httpx

from discogate.app.core.config import Settings, settings as default_settings
from discogate.app.core.logging import get_logger
from discogate.app.exceptions import (
    HostNotAllowed,
    InvalidURL,
    PrivateAddressBlocked,
    ResolutionFailed,
    UpstreamFetchFailed,
)

logger = get_logger(__name__)

DEFAULT_CONTENT_TYPE = "image/jpeg"

Resolver = Callable[[str], Awaitable[List[str]]]

_BLOCKED_IPV4_NETWORKS = tuple(
    ipaddress.IPv4Network(net)
    for net in (
        "0.0.0.0/8",        # "this" network
        "10.0.0.0/8",       # private
        "127.0.0.0/8",      # loopback
        "169.254.0.0/16",   # link-local, cloud metadata
        "172.16.0.0/12",    # private
        "192.168.0.0/16",   # private
    )
)


@dataclass
class RemoteURLCandidate:
    """A URL under validation."""
    raw: str
    scheme: str
    host: str
    addresses: Optional[List[str]] = None
    url: Optional[httpx.URL] = None


@dataclass
class FetchedImage:
    content: bytes
    content_type: str


async def resolve_host(host: str) -> List[str]:
    """Resolve ``host`` to every IPv4 and IPv6 address it has."""
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(host, None, type=socket.SOCK_STREAM)
    addresses: List[str] = []
    for _family, _type, _proto, _canonname, sockaddr in infos:
        address = sockaddr[0]
        if address not in addresses:
            addresses.append(address)
    return addresses


def _is_clean_ipv4(address: str) -> bool:
    parts = address.split(".")
    return len(parts) == 4 and all(p.isdigit() and p == str(int(p)) and int(p) <= 255 for p in parts)


def is_private_address(address: str, allow_public_ipv6: bool = False) -> bool:
    """Return True if ``address`` must not be contacted.

    Anything that is not a clean dotted-quad IPv4 literal is blocked unless
    ``allow_public_ipv6`` is set, in which case only globally routable IPv6
    addresses pass (IPv4-mapped addresses are judged by their IPv4 part).
    """
    if _is_clean_ipv4(address):
        ip4 = ipaddress.IPv4Address(address)
        return any(ip4 in network for network in _BLOCKED_IPV4_NETWORKS)

    if not allow_public_ipv6:
        return True

    try:
        ip = ipaddress.ip_address(address.split("%", 1)[0])
    except ValueError:
        return True
    if not isinstance(ip, ipaddress.IPv6Address):
        return True
    if ip.ipv4_mapped is not None:
        return is_private_address(str(ip.ipv4_mapped))
    return not ip.is_global


def host_is_allowed(host: str, allowed_hosts: Sequence[str]) -> bool:
    return any(host == allowed or host.endswith("." + allowed) for allowed in allowed_hosts)


class SecureFetcher:
    """Fetch remote images from allowlisted public hosts only.

    Args:
        http_client: Client used for the download; should follow redirects
        config: Settings providing the allowlist and limits
        resolver: Async callable mapping a hostname to its addresses
    """

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        config: Optional[Settings] = None,
        resolver: Resolver = resolve_host,
    ):
        self._http_client = http_client
        self.config = config or default_settings
        self._resolver = resolver

    def parse(self, raw_url: str) -> RemoteURLCandidate:
        """Run the parse, scheme and allowlist stages.

        The URL is parsed by httpx, and ``fetch`` sends that same parsed
        object, so the host checked here is the host that gets contacted.
        """
        raw = raw_url.strip()
        try:
            url = httpx.URL(raw)
            # raw_host is the ASCII (IDNA) form httpx will connect to.
            host = url.raw_host.decode("ascii")
        except (httpx.InvalidURL, ValueError) as exc:
            logger.info(f"Rejected unparseable image URL: {exc}")
            raise InvalidURL()
        if not url.scheme or not host:
            raise InvalidURL()

        if url.scheme != "https":
            raise InvalidURL("Only HTTPS URLs are allowed")

        host = host.lower().rstrip(".")
        if not host_is_allowed(host, self.config.image_allowed_hosts):
            raise HostNotAllowed(host)

        return RemoteURLCandidate(raw=raw, scheme="https", host=host, url=url)

    async def check_addresses(self, candidate: RemoteURLCandidate) -> RemoteURLCandidate:
        """Run the resolution and private-address stages."""
        try:
            addresses = await self._resolver(candidate.host)
        except (OSError, UnicodeError) as exc:
            logger.info(f"DNS resolution failed for {candidate.host}: {exc}")
            raise ResolutionFailed(candidate.host)
        if not addresses:
            raise ResolutionFailed(candidate.host)

        for address in addresses:
            if is_private_address(address, self.config.image_allow_public_ipv6):
                logger.warning(
                    f"Blocked image fetch: {candidate.host} resolves to {address}"
                )
                raise PrivateAddressBlocked(address)

        candidate.addresses = list(addresses)
        return candidate

    async def validate(self, raw_url: str) -> RemoteURLCandidate:
        """Validate ``raw_url`` without fetching it."""
        return await self.check_addresses(self.parse(raw_url))

    async def fetch(self, raw_url: str) -> FetchedImage:
        """Validate ``raw_url`` and download it.

        Raises:
            InvalidURL, HostNotAllowed, ResolutionFailed, PrivateAddressBlocked:
                The URL was rejected before any request was made
            UpstreamFetchFailed: The host answered non-2xx, the body exceeded
                ``image_max_bytes``, or the transfer failed
        """
        candidate = await self.validate(raw_url)

        headers = {
            "User-Agent": self.config.image_fetch_user_agent,
            "Accept": "image/*",
        }
        client = self._http_client or httpx.AsyncClient(
            follow_redirects=True, timeout=self.config.httpx_read_timeout
        )
        try:
            async with client.stream("GET", candidate.url, headers=headers) as response:
                if not response.is_success:
                    logger.warning(
                        f"Image host {candidate.host} answered {response.status_code}"
                    )
                    raise UpstreamFetchFailed(response.status_code)

                content = await self._read_limited(response)
                content_type = response.headers.get("content-type") or DEFAULT_CONTENT_TYPE
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.warning(f"Image fetch from {candidate.host} failed: {exc}")
            raise UpstreamFetchFailed() from exc
        finally:
            if self._http_client is None:
                await client.aclose()

        return FetchedImage(content=content, content_type=content_type)

    async def _read_limited(self, response: httpx.Response) -> bytes:
        limit = self.config.image_max_bytes
        declared = response.headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > limit:
            raise UpstreamFetchFailed(response.status_code, "Image exceeds maximum size")

        chunks: List[bytes] = []
        total = 0
        async for chunk in response.aiter_bytes():
            total += len(chunk)
            if total > limit:
                raise UpstreamFetchFailed(response.status_code, "Image exceeds maximum size")
            chunks.append(chunk)
        return b"".join(chunks)
