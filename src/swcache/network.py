"""Outbound HTTP path.

All network I/O goes through a single Network instance. It receives an
httpx.AsyncClient via constructor injection; the worker lifespan owns the
client lifecycle. Responses are read fully and returned as immutable
snapshots, so a body can be handed to both the caller and the store.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from urllib.parse import urlparse

import httpx
import structlog

from swcache.errors import ErrorCode, SwCacheError
from swcache.models.cache import ResponseSnapshot

if TYPE_CHECKING:
    from swcache.config import FetcherSettings
    from swcache.models.cache import ResponseType
    from swcache.models.request import ResourceRequest

log = structlog.get_logger()


def build_http_client(settings: FetcherSettings | None = None) -> httpx.AsyncClient:
    """Create the shared httpx client. Called once at startup."""
    timeout = settings.timeout_seconds if settings is not None else 30.0
    user_agent = settings.user_agent if settings is not None else "swcache/1.0"
    return httpx.AsyncClient(
        follow_redirects=True,
        timeout=httpx.Timeout(timeout),
        headers={"User-Agent": user_agent},
        limits=httpx.Limits(
            max_connections=20,
            max_keepalive_connections=10,
        ),
    )


def origin_of(url: str) -> str:
    """``'https://a.example.com:8443/x?y'`` → ``'https://a.example.com:8443'``."""
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}".lower()


def is_same_origin(url: str, origin: str) -> bool:
    return origin_of(url) == origin_of(origin)


def response_type_for(request: ResourceRequest, origin: str) -> ResponseType:
    """Classify a response the way a browser would expose it to the page."""
    if is_same_origin(request.url, origin):
        return "basic"
    if request.mode == "no-cors":
        return "opaque"
    return "cors"


# Hop-by-hop and transfer headers describe one connection, not the resource.
_UNSTORED_HEADERS = frozenset(
    {"connection", "keep-alive", "transfer-encoding", "content-encoding", "content-length"}
)


class Network:
    """HTTP fetcher producing ResponseSnapshots. Implements NetworkProtocol."""

    def __init__(self, client: httpx.AsyncClient, origin: str) -> None:
        self._client = client
        self._origin = origin

    async def fetch(self, request: ResourceRequest) -> ResponseSnapshot:
        """Perform the request and capture the full response.

        Any status code is a successful fetch; only transport failures raise
        ``SwCacheError(NETWORK_ERROR)``.
        """
        try:
            response = await self._client.request(
                request.method,
                request.url,
                headers=list(request.headers),
                content=request.body or None,
            )
        except httpx.HTTPError as exc:
            log.info("network_error", url=request.url, error=str(exc))
            raise SwCacheError(
                code=ErrorCode.NETWORK_ERROR,
                message=f"Network error fetching {request.url}: {exc}",
                suggestion="The resource may be unreachable while offline.",
                recoverable=True,
            ) from exc

        snapshot = ResponseSnapshot(
            status=response.status_code,
            status_text=response.reason_phrase,
            headers=tuple(
                (name, value)
                for name, value in response.headers.multi_items()
                if name.lower() not in _UNSTORED_HEADERS
            ),
            body=response.content,
            type=response_type_for(request, self._origin),
            url=str(response.url),
        )
        log.debug(
            "network_fetch_complete",
            url=request.url,
            status_code=snapshot.status,
            content_length=len(snapshot.body),
        )
        return snapshot
