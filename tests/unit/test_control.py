"""Unit tests for swcache.control."""

from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING

import pytest

from swcache.clients import QueueClient
from swcache.control import ControlChannel, parse_control_message
from swcache.lifecycle import LifecycleController
from swcache.models.cache import RequestKey, ResponseSnapshot
from swcache.models.messages import (
    CacheCleared,
    ClearCache,
    ClearCacheUrl,
    GetVersion,
    SkipWaiting,
    VersionInfo,
)

if TYPE_CHECKING:
    from swcache.clients import ClientRegistry
    from swcache.network import Network
    from swcache.store import GenerationRegistry

ORIGIN = "http://app.test"
GENERATION_ID = "app-v1"
VERSION = "1.2.3"

SNAPSHOT = ResponseSnapshot(status=200, body=b"body{}", url=f"{ORIGIN}/style.css")


class BrokenClient:
    """A client whose connection has already gone away."""

    def __init__(self) -> None:
        self.id = "broken"
        self.controller: str | None = None

    async def post_message(self, message: dict) -> None:
        raise ConnectionResetError("client gone")


@pytest.fixture()
def lifecycle(
    registry: GenerationRegistry, network: Network, clients: ClientRegistry
) -> LifecycleController:
    return LifecycleController(
        registry, network, clients, generation_id=GENERATION_ID, origin=ORIGIN
    )


@pytest.fixture()
def channel(
    lifecycle: LifecycleController, registry: GenerationRegistry, clients: ClientRegistry
) -> ControlChannel:
    return ControlChannel(lifecycle, registry, clients, version=VERSION, origin=ORIGIN)


@pytest.fixture()
async def active(lifecycle: LifecycleController) -> LifecycleController:
    await lifecycle.install()
    lifecycle.release_previous()
    await lifecycle.activate()
    return lifecycle


# ---------------------------------------------------------------------------
# parse_control_message
# ---------------------------------------------------------------------------


class TestParse:
    def test_clear_cache(self) -> None:
        assert isinstance(parse_control_message({"type": "CLEAR_CACHE"}), ClearCache)

    def test_clear_cache_with_url(self) -> None:
        message = parse_control_message({"type": "CLEAR_CACHE", "url": "/style.css"})
        assert isinstance(message, ClearCacheUrl)
        assert message.url == "/style.css"

    def test_clear_cache_null_url_clears_everything(self) -> None:
        message = parse_control_message({"type": "CLEAR_CACHE", "url": None})
        assert isinstance(message, ClearCache)

    def test_json_text(self) -> None:
        assert isinstance(parse_control_message('{"type": "GET_VERSION"}'), GetVersion)
        assert isinstance(parse_control_message(b'{"type": "SKIP_WAITING"}'), SkipWaiting)

    @pytest.mark.parametrize(
        "raw",
        [
            {"type": "UNKNOWN"},
            {"kind": "CLEAR_CACHE"},
            {"type": 7},
            {"type": "CLEAR_CACHE", "url": 12},
            42,
            None,
            "not json",
            "[]",
        ],
    )
    def test_malformed_returns_none(self, raw: object) -> None:
        assert parse_control_message(raw) is None


# ---------------------------------------------------------------------------
# ControlChannel
# ---------------------------------------------------------------------------


class TestClearCache:
    async def test_clear_then_get_version(
        self,
        active: LifecycleController,
        channel: ControlChannel,
        clients: ClientRegistry,
        registry: GenerationRegistry,
    ) -> None:
        await active.store.put(RequestKey("GET", SNAPSHOT.url), SNAPSHOT)
        tabs = [QueueClient("tab-1"), QueueClient("tab-2"), QueueClient("tab-3")]
        for tab in tabs:
            clients.register(tab)

        reply = await channel.handle({"type": "CLEAR_CACHE"}, source=tabs[0])

        assert reply == CacheCleared(success=True)
        assert await registry.list() == []
        for tab in tabs:
            assert tab.drain_messages() == [{"type": "CACHE_CLEARED", "success": True}]

        version = await channel.handle({"type": "GET_VERSION"}, source=tabs[1])

        assert version == VersionInfo(version=VERSION, generation_id=GENERATION_ID)
        assert tabs[1].drain_messages() == [
            {"type": "VERSION", "version": VERSION, "cacheName": GENERATION_ID}
        ]
        assert tabs[0].drain_messages() == []
        assert tabs[2].drain_messages() == []

    async def test_clear_single_relative_url(
        self, active: LifecycleController, channel: ControlChannel, clients: ClientRegistry
    ) -> None:
        other = ResponseSnapshot(status=200, body=b"js", url=f"{ORIGIN}/app.js")
        await active.store.put(RequestKey("GET", SNAPSHOT.url), SNAPSHOT)
        await active.store.put(RequestKey("GET", other.url), other)
        tab = QueueClient()
        clients.register(tab)

        reply = await channel.handle({"type": "CLEAR_CACHE", "url": "/style.css"})

        assert reply == CacheCleared(success=True)
        assert await active.store.keys() == [RequestKey("GET", other.url)]
        assert tab.drain_messages() == [{"type": "CACHE_CLEARED", "success": True}]

    async def test_clear_single_absolute_url(
        self, active: LifecycleController, channel: ControlChannel
    ) -> None:
        url = "https://cdn.test/all.min.css"
        await active.store.put(RequestKey("GET", url), SNAPSHOT)
        await channel.handle({"type": "CLEAR_CACHE", "url": url})
        assert await active.store.keys() == []

    async def test_clear_missing_url_still_succeeds(
        self, active: LifecycleController, channel: ControlChannel
    ) -> None:
        reply = await channel.handle({"type": "CLEAR_CACHE", "url": "/never-stored.js"})
        assert reply == CacheCleared(success=True)

    async def test_broken_client_is_skipped(
        self, active: LifecycleController, channel: ControlChannel, clients: ClientRegistry
    ) -> None:
        tab = QueueClient("tab-1")
        clients.register(BrokenClient())
        clients.register(tab)

        await channel.handle({"type": "CLEAR_CACHE"})

        assert tab.drain_messages() == [{"type": "CACHE_CLEARED", "success": True}]


class TestGetVersion:
    async def test_reply_without_source_is_not_broadcast(
        self, active: LifecycleController, channel: ControlChannel, clients: ClientRegistry
    ) -> None:
        tab = QueueClient()
        clients.register(tab)
        reply = await channel.handle(json.dumps({"type": "GET_VERSION"}))
        assert isinstance(reply, VersionInfo)
        assert tab.drain_messages() == []

    async def test_generation_id_survives_clear(
        self, active: LifecycleController, channel: ControlChannel
    ) -> None:
        await channel.handle({"type": "CLEAR_CACHE"})
        reply = await channel.handle({"type": "GET_VERSION"})
        assert isinstance(reply, VersionInfo)
        assert reply.generation_id == GENERATION_ID


class TestGating:
    async def test_malformed_message_ignored(
        self, active: LifecycleController, channel: ControlChannel, clients: ClientRegistry
    ) -> None:
        tab = QueueClient()
        clients.register(tab)
        assert await channel.handle({"type": "DROP_TABLES"}) is None
        assert await channel.handle("{{{") is None
        assert tab.drain_messages() == []

    async def test_messages_ignored_before_active(
        self,
        lifecycle: LifecycleController,
        channel: ControlChannel,
        registry: GenerationRegistry,
    ) -> None:
        await lifecycle.install()
        assert await channel.handle({"type": "CLEAR_CACHE"}) is None
        assert await channel.handle({"type": "GET_VERSION"}) is None
        assert await registry.list() == [GENERATION_ID]

    async def test_skip_waiting_opens_gate(
        self, lifecycle: LifecycleController, channel: ControlChannel
    ) -> None:
        await lifecycle.install()
        assert await channel.handle({"type": "SKIP_WAITING"}) is None
        await asyncio.wait_for(lifecycle.wait_for_activation(), timeout=1)
