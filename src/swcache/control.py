"""Out-of-band command messages from foreground clients.

Malformed or unrecognised messages are ignored; they are not an error
condition. Until the lifecycle is ACTIVE only SKIP_WAITING is honoured.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from urllib.parse import urljoin

import structlog
from pydantic import ValidationError

from swcache.errors import SwCacheError
from swcache.models.cache import RequestKey, normalize_url
from swcache.models.messages import (
    CacheCleared,
    ClearCache,
    ClearCacheUrl,
    ControlMessage,
    ControlReply,
    GetVersion,
    SkipWaiting,
    VersionInfo,
    control_message_adapter,
    reply_payload,
)

if TYPE_CHECKING:
    from swcache.clients import ClientRegistry
    from swcache.lifecycle import LifecycleController
    from swcache.protocols import ClientProtocol, GenerationRegistryProtocol

log = structlog.get_logger()


def parse_control_message(raw: object) -> ControlMessage | None:
    """Validate a raw message (JSON text or decoded object). ``None`` if malformed."""
    try:
        if isinstance(raw, (str, bytes)):
            return control_message_adapter.validate_json(raw)
        return control_message_adapter.validate_python(raw)
    except ValidationError:
        return None


class ControlChannel:
    def __init__(
        self,
        lifecycle: LifecycleController,
        registry: GenerationRegistryProtocol,
        clients: ClientRegistry,
        *,
        version: str,
        origin: str,
    ) -> None:
        self._lifecycle = lifecycle
        self._registry = registry
        self._clients = clients
        self._version = version
        self._origin = origin

    async def handle(
        self, raw: object, source: ClientProtocol | None = None
    ) -> ControlReply | None:
        """Dispatch one message. Returns the reply sent, if any."""
        message = parse_control_message(raw)
        if message is None:
            log.debug("control_message_ignored", reason="malformed")
            return None

        if isinstance(message, SkipWaiting):
            self._lifecycle.skip_waiting()
            return None

        if not self._lifecycle.is_active:
            log.debug(
                "control_message_ignored",
                reason="not_active",
                type=message.type,
                state=self._lifecycle.state,
            )
            return None

        if isinstance(message, ClearCacheUrl):
            return await self._clear_url(message.url)
        if isinstance(message, ClearCache):
            return await self._clear_all()
        if isinstance(message, GetVersion):
            return await self._get_version(source)
        return None

    async def _clear_all(self) -> CacheCleared:
        result = await self._registry.delete_all()
        reply = CacheCleared(success=result.ok)
        reached = await self._clients.broadcast(reply_payload(reply))
        log.info(
            "cache_cleared",
            generations=result.deleted,
            success=reply.success,
            clients_notified=reached,
        )
        return reply

    async def _clear_url(self, url: str) -> CacheCleared:
        key = RequestKey("GET", normalize_url(urljoin(f"{self._origin}/", url)))
        try:
            removed = await self._lifecycle.store.delete(key)
            success = True
        except SwCacheError:
            log.warning("cache_entry_clear_failed", url=key.url, exc_info=True)
            removed = False
            success = False
        reply = CacheCleared(success=success)
        await self._clients.broadcast(reply_payload(reply))
        log.info("cache_entry_cleared", url=key.url, removed=removed)
        return reply

    async def _get_version(self, source: ClientProtocol | None) -> VersionInfo:
        reply = VersionInfo(version=self._version, generation_id=self._lifecycle.generation_id)
        if source is not None:
            await source.post_message(reply_payload(reply))
        return reply
