"""Install → activate → steady-state orchestration.

States move strictly forward:

    INSTALLING -> WAITING -> ACTIVATING -> ACTIVE

Install populates the new generation best-effort: every resource is fetched
in its own task and the batch settles only when all of them have succeeded or
failed. A single 404 never costs the others their entry. Only a failure to
open the generation store itself is fatal.

Activation is deferred until the previous instance releases its clients, or
forced with ``skip_waiting()``. Stale generations are deleted only after the
new one is fully populated, then every open client is claimed.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING
from urllib.parse import urljoin

import structlog

from swcache.errors import SwCacheError
from swcache.models.request import ResourceRequest

if TYPE_CHECKING:
    from collections.abc import Iterable

    from swcache.clients import ClientRegistry
    from swcache.protocols import GenerationRegistryProtocol, NetworkProtocol, StoreProtocol

log = structlog.get_logger()


class LifecycleState(StrEnum):
    INSTALLING = "installing"
    WAITING = "waiting"
    ACTIVATING = "activating"
    ACTIVE = "active"


@dataclass
class InstallReport:
    """URLs stored and URLs skipped during pre-population."""

    stored: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


class LifecycleController:
    def __init__(
        self,
        registry: GenerationRegistryProtocol,
        network: NetworkProtocol,
        clients: ClientRegistry,
        *,
        generation_id: str,
        origin: str,
        core_assets: Iterable[str] = (),
        external_resources: Iterable[str] = (),
        skip_waiting_on_install: bool = False,
    ) -> None:
        self._registry = registry
        self._network = network
        self._clients = clients
        self._generation_id = generation_id
        self._origin = origin
        self._core_assets = tuple(core_assets)
        self._external_resources = tuple(external_resources)
        self._skip_waiting_on_install = skip_waiting_on_install

        self._state = LifecycleState.INSTALLING
        self._store: StoreProtocol | None = None
        self._activation_gate = asyncio.Event()
        self._log = log.bind(generation_id=generation_id)

    @property
    def generation_id(self) -> str:
        return self._generation_id

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state is LifecycleState.ACTIVE

    @property
    def store(self) -> StoreProtocol:
        if self._store is None:
            raise RuntimeError("Generation store not opened; install() has not completed")
        return self._store

    # ------------------------------------------------------------------
    # Installing
    # ------------------------------------------------------------------

    def precache_requests(self) -> list[ResourceRequest]:
        """Requests issued during install, core assets first."""
        requests = [
            ResourceRequest(url=urljoin(f"{self._origin}/", path), mode="same-origin")
            for path in self._core_assets
        ]
        requests.extend(ResourceRequest(url=url, mode="cors") for url in self._external_resources)
        return requests

    async def install(self) -> InstallReport:
        """Open the generation and pre-populate it.

        Raises ``SwCacheError`` if the store cannot be opened; the controller
        then stays in INSTALLING.
        """
        if self._state is not LifecycleState.INSTALLING:
            raise RuntimeError(f"install() called in state {self._state}")

        self._log.info("install_started")
        try:
            store = await self._registry.open(self._generation_id)
        except SwCacheError:
            self._log.error("install_failed", reason="store_open_failed")
            raise
        self._store = store

        requests = self.precache_requests()
        results = await asyncio.gather(
            *(self._precache(store, request) for request in requests),
            return_exceptions=True,
        )

        report = InstallReport()
        for request, result in zip(requests, results, strict=True):
            if isinstance(result, Exception):
                self._log.warning("precache_failed", url=request.url, error=repr(result))
                report.failed.append(request.url)
            elif result:
                report.stored.append(request.url)
            else:
                report.failed.append(request.url)

        self._state = LifecycleState.WAITING
        self._log.info(
            "install_complete",
            stored=len(report.stored),
            failed=len(report.failed),
        )

        if self._skip_waiting_on_install:
            self.skip_waiting()
        return report

    async def _precache(self, store: StoreProtocol, request: ResourceRequest) -> bool:
        try:
            response = await self._network.fetch(request)
        except SwCacheError as exc:
            self._log.warning("precache_failed", url=request.url, error=exc.message)
            return False

        if not response.ok:
            self._log.warning("precache_failed", url=request.url, status_code=response.status)
            return False

        try:
            await store.put(request.key, response.clone())
        except SwCacheError as exc:
            self._log.warning("precache_failed", url=request.url, error=exc.message)
            return False
        self._log.debug("precache_stored", url=request.url)
        return True

    # ------------------------------------------------------------------
    # Waiting
    # ------------------------------------------------------------------

    def skip_waiting(self) -> None:
        """Activate as soon as install has finished, without waiting for release."""
        if not self._activation_gate.is_set():
            self._log.info("skip_waiting")
        self._activation_gate.set()

    def release_previous(self) -> None:
        """Signal that the previous instance has no more active users."""
        self._activation_gate.set()

    async def wait_for_activation(self) -> None:
        await self._activation_gate.wait()

    # ------------------------------------------------------------------
    # Activating
    # ------------------------------------------------------------------

    async def activate(self) -> list[str]:
        """Delete stale generations and claim every open client.

        Returns the ids of the generations that were deleted.
        """
        if self._state is not LifecycleState.WAITING:
            raise RuntimeError(f"activate() called in state {self._state}")

        self._state = LifecycleState.ACTIVATING
        self._log.info("activate_started")

        result = await self._registry.delete_except(self._generation_id)
        if not result.ok:
            self._log.warning("stale_generations_remaining", failed=result.failed)
        claimed = self._clients.claim(self._generation_id)

        self._state = LifecycleState.ACTIVE
        self._log.info("activate_complete", deleted=result.deleted, clients_claimed=claimed)
        return result.deleted

    async def run(self) -> InstallReport:
        """Drive the controller from INSTALLING to ACTIVE."""
        report = await self.install()
        await self.wait_for_activation()
        await self.activate()
        return report
