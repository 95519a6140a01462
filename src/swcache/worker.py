"""Event router tying the components together.

Each event kind maps to one handler and produces a result the caller can
await, instead of relying on globally registered listeners:

  InstallEvent  → LifecycleController.install()   → InstallReport
  ActivateEvent → wait for the gate, activate()   → deleted generation ids
  FetchEvent    → ResourceFetcher.handle()        → FetchOutcome
  MessageEvent  → ControlChannel.handle()         → reply or None

``open_worker`` owns the database connection and the HTTP client for the
worker's lifetime.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import aiosqlite
import structlog

from swcache.clients import ClientRegistry
from swcache.control import ControlChannel
from swcache.fetcher import FetchOutcome, ResourceFetcher
from swcache.lifecycle import LifecycleController
from swcache.network import Network, build_http_client
from swcache.router import Route, Strategy, StrategyRouter
from swcache.store import GenerationRegistry

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from swcache.config import Settings
    from swcache.models.request import ResourceRequest
    from swcache.protocols import ClientProtocol, GenerationRegistryProtocol, NetworkProtocol

log = structlog.get_logger()


@dataclass(frozen=True)
class InstallEvent:
    pass


@dataclass(frozen=True)
class ActivateEvent:
    pass


@dataclass(frozen=True)
class FetchEvent:
    request: ResourceRequest


@dataclass(frozen=True)
class MessageEvent:
    data: object
    source: ClientProtocol | None = None


Event = InstallEvent | ActivateEvent | FetchEvent | MessageEvent


class CacheWorker:
    """One controller instance bound to one generation."""

    def __init__(
        self,
        settings: Settings,
        registry: GenerationRegistryProtocol,
        network: NetworkProtocol,
        clients: ClientRegistry | None = None,
    ) -> None:
        self.settings = settings
        self.registry = registry
        self.network = network
        self.clients = clients if clients is not None else ClientRegistry()
        self.router = StrategyRouter(
            settings.origin,
            dynamic_endpoints=settings.routing.dynamic_endpoints,
            app_shell_paths=settings.routing.app_shell_paths,
        )
        self.lifecycle = LifecycleController(
            registry,
            network,
            self.clients,
            generation_id=settings.generation.name,
            origin=settings.origin,
            core_assets=settings.precache.core_assets,
            external_resources=settings.precache.external_resources,
            skip_waiting_on_install=settings.lifecycle.skip_waiting_on_install,
        )
        self.control = ControlChannel(
            self.lifecycle,
            registry,
            self.clients,
            version=settings.generation.version,
            origin=settings.origin,
        )
        self._fetcher: ResourceFetcher | None = None

    @property
    def fetcher(self) -> ResourceFetcher:
        if self._fetcher is None:
            raise RuntimeError("Worker not installed")
        return self._fetcher

    async def dispatch(self, event: Event) -> object:
        if isinstance(event, InstallEvent):
            report = await self.lifecycle.install()
            self._fetcher = ResourceFetcher(
                self.lifecycle.store,
                self.network,
                self.router,
                origin=self.settings.origin,
                offline_shell_paths=self.settings.routing.offline_shell_paths,
            )
            return report
        if isinstance(event, ActivateEvent):
            await self.lifecycle.wait_for_activation()
            return await self.lifecycle.activate()
        if isinstance(event, FetchEvent):
            return await self.handle_fetch(event.request)
        if isinstance(event, MessageEvent):
            return await self.control.handle(event.data, event.source)
        raise TypeError(f"Unknown event: {event!r}")

    async def handle_fetch(self, request: ResourceRequest) -> FetchOutcome:
        """Serve a request; until ACTIVE nothing is intercepted."""
        if not self.lifecycle.is_active:
            response = await self.network.fetch(request)
            return FetchOutcome(route=Route(Strategy.BYPASS), response=response)
        return await self.fetcher.handle(request)

    async def run(self) -> None:
        """Install, then activate once the gate opens."""
        await self.dispatch(InstallEvent())
        await self.dispatch(ActivateEvent())

    async def close(self) -> None:
        if self._fetcher is not None:
            await self._fetcher.drain()


@asynccontextmanager
async def open_worker(settings: Settings) -> AsyncGenerator[CacheWorker, None]:
    """Create and tear down the worker's database connection and HTTP client."""
    db_path = settings.store.db_path
    if db_path != ":memory:":
        path = Path(db_path).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        db_path = str(path)

    db = await aiosqlite.connect(db_path)
    http_client = build_http_client(settings.fetcher)
    try:
        registry = GenerationRegistry(db)
        await registry.init_db()
        worker = CacheWorker(settings, registry, Network(http_client, settings.origin))
        try:
            yield worker
        finally:
            await worker.close()
    finally:
        await http_client.aclose()
        await db.close()
