"""Fetch strategies: cache-first, network-first and network-only.

Stores happen in the background against a clone of the response; the caller
always receives its own snapshot and never waits on the store. Store failures
are logged and never change the response already being returned.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import TYPE_CHECKING
from urllib.parse import urljoin

import structlog

from swcache.errors import ErrorCode, SwCacheError
from swcache.models.cache import RequestKey, ResponseSnapshot, normalize_url
from swcache.router import Route, Strategy

if TYPE_CHECKING:
    from collections.abc import Iterable

    from swcache.models.request import ResourceRequest
    from swcache.protocols import NetworkProtocol, StoreProtocol
    from swcache.router import StrategyRouter

log = structlog.get_logger()

# Opaque and error responses hide their real status and are never stored.
_STORABLE_TYPES = frozenset({"basic", "cors"})

OFFLINE_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>Offline</title>
</head>
<body>
<h1>You are offline</h1>
<p>This page is not available without a network connection. It will load again once you are back online.</p>
</body>
</html>
"""


def offline_document() -> ResponseSnapshot:
    return ResponseSnapshot(
        status=200,
        status_text="OK",
        headers=(("content-type", "text/html; charset=utf-8"),),
        body=OFFLINE_HTML.encode("utf-8"),
    )


def offline_error(reason: str = ErrorCode.OFFLINE) -> ResponseSnapshot:
    return ResponseSnapshot(
        status=503,
        status_text="Service Unavailable",
        headers=(("content-type", "application/json"),),
        body=json.dumps({"error": reason}).encode("utf-8"),
    )


@dataclass(frozen=True)
class FetchOutcome:
    route: Route
    response: ResponseSnapshot


class ResourceFetcher:
    """Executes the strategy chosen by the router against the store and the network."""

    def __init__(
        self,
        store: StoreProtocol,
        network: NetworkProtocol,
        router: StrategyRouter,
        *,
        origin: str,
        offline_shell_paths: Iterable[str] = ("/index.html", "/"),
    ) -> None:
        self._store = store
        self._network = network
        self._router = router
        self._shell_keys = tuple(
            RequestKey("GET", normalize_url(urljoin(f"{origin}/", path)))
            for path in offline_shell_paths
        )
        self._pending: set[asyncio.Task[None]] = set()

    async def handle(self, request: ResourceRequest) -> FetchOutcome:
        route = self._router.classify(request)
        log.debug("request_classified", url=request.url, strategy=route.strategy)

        if route.strategy in (Strategy.BYPASS, Strategy.NETWORK_ONLY):
            response = await self.network_only(request)
        elif route.strategy is Strategy.NETWORK_FIRST:
            response = await self.network_first(request, is_document=route.is_document)
        else:
            response = await self.cache_first(request)
        return FetchOutcome(route=route, response=response)

    async def cache_first(self, request: ResourceRequest) -> ResponseSnapshot:
        """Serve from the store; on a miss fetch and store a cacheable response.

        Network failures on a miss propagate to the caller.
        """
        key = request.key
        cached = await self._store.match(key)
        if cached is not None:
            log.debug("cache_hit", url=key.url)
            return cached

        log.debug("cache_miss", url=key.url)
        response = await self._network.fetch(request)
        if key.method == "GET" and response.status == 200 and response.type == "basic":
            self._schedule_store(key, response.clone())
        return response

    async def network_first(
        self, request: ResourceRequest, *, is_document: bool = False
    ) -> ResponseSnapshot:
        """Fetch from the network; fall back to the store, then to a synthesized response."""
        key = request.key
        try:
            response = await self._network.fetch(request)
        except SwCacheError as exc:
            if exc.code != ErrorCode.NETWORK_ERROR:
                raise
            cached = await self._store.match(key)
            if cached is not None:
                log.info("cache_fallback", url=key.url)
                return cached
            return await self._offline_response(key, is_document=is_document)

        if key.method == "GET" and response.status == 200 and response.type in _STORABLE_TYPES:
            self._schedule_store(key, response.clone())
        return response

    async def network_only(self, request: ResourceRequest) -> ResponseSnapshot:
        """Fetch from the network. Never reads from or writes to the store."""
        return await self._network.fetch(request)

    async def drain(self) -> None:
        """Wait for every background store scheduled so far."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    async def _offline_response(self, key: RequestKey, *, is_document: bool) -> ResponseSnapshot:
        if not is_document:
            log.info("offline_error_served", url=key.url)
            return offline_error()

        for shell_key in self._shell_keys:
            shell = await self._store.match(shell_key)
            if shell is not None:
                log.info("offline_shell_served", url=key.url, shell=shell_key.url)
                return shell
        log.info("offline_page_served", url=key.url)
        return offline_document()

    def _schedule_store(self, key: RequestKey, snapshot: ResponseSnapshot) -> None:
        task = asyncio.create_task(self._store_copy(key, snapshot))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _store_copy(self, key: RequestKey, snapshot: ResponseSnapshot) -> None:
        try:
            await self._store.put(key, snapshot)
            log.debug("cache_stored", url=key.url, status=snapshot.status)
        except SwCacheError:
            log.warning("cache_write_error", url=key.url, exc_info=True)
