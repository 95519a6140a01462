"""Open client connections.

Broadcasts iterate over a snapshot taken per call: clients may connect or
disconnect between messages, and a client that goes away mid-broadcast is
skipped without affecting the others.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from swcache.protocols import ClientProtocol

log = structlog.get_logger()


class QueueClient:
    """In-memory client whose messages land on an asyncio.Queue."""

    def __init__(self, client_id: str | None = None) -> None:
        self._id = client_id or uuid.uuid4().hex
        self.controller: str | None = None
        self.messages: asyncio.Queue[dict] = asyncio.Queue()

    @property
    def id(self) -> str:
        return self._id

    async def post_message(self, message: dict) -> None:
        await self.messages.put(message)

    def drain_messages(self) -> list[dict]:
        """Return every queued message without waiting."""
        received: list[dict] = []
        while not self.messages.empty():
            received.append(self.messages.get_nowait())
        return received


class ClientRegistry:
    """The set of currently open client connections."""

    def __init__(self) -> None:
        self._clients: dict[str, ClientProtocol] = {}

    def __len__(self) -> int:
        return len(self._clients)

    def register(self, client: ClientProtocol) -> None:
        self._clients[client.id] = client
        log.debug("client_registered", client_id=client.id, clients=len(self._clients))

    def unregister(self, client: ClientProtocol) -> None:
        self._clients.pop(client.id, None)
        log.debug("client_unregistered", client_id=client.id, clients=len(self._clients))

    def snapshot(self) -> list[ClientProtocol]:
        return list(self._clients.values())

    async def broadcast(self, message: dict) -> int:
        """Post ``message`` to every open client. Returns the number reached."""
        clients = self.snapshot()
        results = await asyncio.gather(
            *(client.post_message(message) for client in clients),
            return_exceptions=True,
        )
        delivered = 0
        for client, result in zip(clients, results, strict=True):
            if isinstance(result, Exception):
                log.info("client_broadcast_skipped", client_id=client.id, error=str(result))
                continue
            delivered += 1
        return delivered

    def claim(self, generation_id: str) -> int:
        """Put every open client under the control of ``generation_id``."""
        clients = self.snapshot()
        for client in clients:
            client.controller = generation_id
        log.info("clients_claimed", generation_id=generation_id, clients=len(clients))
        return len(clients)
