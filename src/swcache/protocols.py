"""Protocol interfaces for swappable components.

The lifecycle, fetcher and control channel reference these protocols, not the
concrete implementations. This allows:
- Tests to use lightweight in-memory or failing implementations
- Future backends (e.g. a Redis store) to be swapped without touching strategy code
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from swcache.models.cache import CacheEntry, Generation, RequestKey, ResponseSnapshot
    from swcache.models.request import ResourceRequest
    from swcache.store import DeleteResult


class StoreProtocol(Protocol):
    """Key/value resource store scoped to one generation."""

    @property
    def generation_id(self) -> str: ...

    async def match(self, key: RequestKey) -> ResponseSnapshot | None: ...

    async def get_entry(self, key: RequestKey) -> CacheEntry | None: ...

    async def put(self, key: RequestKey, snapshot: ResponseSnapshot) -> None: ...

    async def delete(self, key: RequestKey) -> bool: ...

    async def keys(self) -> list[RequestKey]: ...


class GenerationRegistryProtocol(Protocol):
    """Enumerates, creates and deletes generations."""

    async def open(self, generation_id: str) -> StoreProtocol: ...

    async def list(self) -> list[str]: ...

    async def get(self, generation_id: str) -> Generation | None: ...

    async def delete(self, generation_id: str) -> bool: ...

    async def delete_except(self, active_id: str) -> DeleteResult: ...

    async def delete_all(self) -> DeleteResult: ...


class NetworkProtocol(Protocol):
    """Interface for the outbound HTTP path."""

    async def fetch(self, request: ResourceRequest) -> ResponseSnapshot: ...


class ClientProtocol(Protocol):
    """An open foreground client connection."""

    @property
    def id(self) -> str: ...

    controller: str | None

    async def post_message(self, message: dict) -> None: ...
