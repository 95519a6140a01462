"""Shared test fixtures for the swcache test suite."""

from __future__ import annotations

from typing import TYPE_CHECKING

import aiosqlite
import httpx
import pytest
import respx

from swcache.clients import ClientRegistry
from swcache.config import Settings
from swcache.network import Network
from swcache.store import GenerationRegistry, Store

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterator

ORIGIN = "http://app.test"
GENERATION_ID = "app-v1"
VERSION = "1.2.3"


@pytest.fixture()
async def db() -> AsyncIterator[aiosqlite.Connection]:
    async with aiosqlite.connect(":memory:") as conn:
        yield conn


@pytest.fixture()
async def registry(db: aiosqlite.Connection) -> GenerationRegistry:
    registry = GenerationRegistry(db)
    await registry.init_db()
    return registry


@pytest.fixture()
async def store(registry: GenerationRegistry) -> Store:
    return await registry.open(GENERATION_ID)


@pytest.fixture()
async def network() -> AsyncIterator[Network]:
    async with httpx.AsyncClient() as client:
        yield Network(client, ORIGIN)


@pytest.fixture()
def clients() -> ClientRegistry:
    return ClientRegistry()


@pytest.fixture()
def upstream() -> Iterator[respx.MockRouter]:
    """Mocked network. Every request must match a route."""
    with respx.mock(assert_all_called=False) as router:
        yield router


@pytest.fixture()
def settings() -> Settings:
    """Settings with no pre-population, so installs need no network."""
    return Settings(
        origin=ORIGIN,
        generation={"name": GENERATION_ID, "version": VERSION},
        precache={"core_assets": [], "external_resources": []},
        routing={"dynamic_endpoints": ["script.google.com", "api.app.test/exec"]},
        store={"db_path": ":memory:"},
    )
