"""SQLite resource store partitioned into generations.

One ``generations`` row per deployment and one ``entries`` row per cached
response. Entries reference their generation with ``ON DELETE CASCADE`` so
deleting a generation makes all of its entries unreachable in one statement.

Read failures are logged and treated as a miss. Write and delete failures are
raised as ``SwCacheError`` so the caller decides whether they are fatal:
opening the install generation is, a background store during steady state is
not.
"""

from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime
from typing import NamedTuple

import aiosqlite
import structlog

from swcache.errors import ErrorCode, SwCacheError
from swcache.models.cache import CacheEntry, Generation, RequestKey, ResponseSnapshot

log = structlog.get_logger()

_CREATE_GENERATIONS_TABLE = """
CREATE TABLE IF NOT EXISTS generations (
    id         TEXT PRIMARY KEY,
    created_at TEXT NOT NULL
)
"""

_CREATE_ENTRIES_TABLE = """
CREATE TABLE IF NOT EXISTS entries (
    generation_id TEXT NOT NULL REFERENCES generations(id) ON DELETE CASCADE,
    method        TEXT NOT NULL,
    url           TEXT NOT NULL,
    status        INTEGER NOT NULL,
    status_text   TEXT NOT NULL DEFAULT '',
    headers       TEXT NOT NULL DEFAULT '[]',
    body          BLOB NOT NULL,
    response_type TEXT NOT NULL,
    response_url  TEXT NOT NULL DEFAULT '',
    stored_at     TEXT NOT NULL,
    PRIMARY KEY (generation_id, method, url)
)
"""

_INSERT_GENERATION = "INSERT OR IGNORE INTO generations (id, created_at) VALUES (?, ?)"


class DeleteResult(NamedTuple):
    deleted: list[str]
    failed: list[str]

    @property
    def ok(self) -> bool:
        return not self.failed


class Store:
    """Resource store scoped to a single generation. Implements StoreProtocol."""

    def __init__(self, db: aiosqlite.Connection, generation_id: str) -> None:
        self._db = db
        self._generation_id = generation_id

    @property
    def generation_id(self) -> str:
        return self._generation_id

    async def get_entry(self, key: RequestKey) -> CacheEntry | None:
        """Read an entry. Returns ``None`` on miss or read failure."""
        try:
            cursor = await self._db.execute(
                "SELECT status, status_text, headers, body, response_type, response_url, "
                "stored_at FROM entries WHERE generation_id = ? AND method = ? AND url = ?",
                (self._generation_id, key.method, key.url),
            )
            row = await cursor.fetchone()
            if row is None:
                return None

            payload = ResponseSnapshot(
                status=row[0],
                status_text=row[1],
                headers=tuple((name, value) for name, value in json.loads(row[2])),
                body=bytes(row[3]),
                type=row[4],
                url=row[5],
            )
            return CacheEntry(
                key=key,
                payload=payload,
                stored_at=datetime.fromisoformat(row[6]),
            )
        except aiosqlite.Error:
            log.warning(
                "store_read_error",
                generation_id=self._generation_id,
                url=key.url,
                exc_info=True,
            )
            return None

    async def match(self, key: RequestKey) -> ResponseSnapshot | None:
        entry = await self.get_entry(key)
        return entry.payload if entry is not None else None

    async def put(self, key: RequestKey, snapshot: ResponseSnapshot) -> None:
        """Store a snapshot, replacing any earlier entry for the same key."""
        if key.method != "GET":
            raise ValueError(f"Only GET requests can be stored, got {key.method}")

        now = datetime.now(UTC).isoformat()
        try:
            # The generation row may have been removed by a full clear; the
            # active store keeps working by re-creating it.
            await self._db.execute(_INSERT_GENERATION, (self._generation_id, now))
            await self._db.execute(
                "INSERT OR REPLACE INTO entries "
                "(generation_id, method, url, status, status_text, headers, body, "
                "response_type, response_url, stored_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    self._generation_id,
                    key.method,
                    key.url,
                    snapshot.status,
                    snapshot.status_text,
                    json.dumps([list(pair) for pair in snapshot.headers]),
                    snapshot.body,
                    snapshot.type,
                    snapshot.url,
                    now,
                ),
            )
            await self._db.commit()
        except aiosqlite.Error as exc:
            raise SwCacheError(
                code=ErrorCode.STORE_WRITE_FAILED,
                message=f"Failed to store {key.url} in {self._generation_id}: {exc}",
                suggestion="Check that the cache database is writable.",
                recoverable=True,
            ) from exc

    async def delete(self, key: RequestKey) -> bool:
        """Delete one entry. Returns True if an entry was removed."""
        try:
            cursor = await self._db.execute(
                "DELETE FROM entries WHERE generation_id = ? AND method = ? AND url = ?",
                (self._generation_id, key.method, key.url),
            )
            deleted = cursor.rowcount > 0
            await self._db.commit()
        except aiosqlite.Error as exc:
            raise SwCacheError(
                code=ErrorCode.STORE_WRITE_FAILED,
                message=f"Failed to delete {key.url} from {self._generation_id}: {exc}",
                recoverable=True,
            ) from exc
        return deleted

    async def keys(self) -> list[RequestKey]:
        """List every key in this generation. Empty on read failure."""
        try:
            cursor = await self._db.execute(
                "SELECT method, url FROM entries WHERE generation_id = ? ORDER BY url",
                (self._generation_id,),
            )
            return [RequestKey(row[0], row[1]) for row in await cursor.fetchall()]
        except aiosqlite.Error:
            log.warning("store_keys_error", generation_id=self._generation_id, exc_info=True)
            return []


class GenerationRegistry:
    """Creates, enumerates and deletes generations. Implements GenerationRegistryProtocol."""

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    async def init_db(self) -> None:
        """Create tables and set WAL mode. Called once at startup."""
        await self._db.execute("PRAGMA journal_mode = WAL")
        await self._db.execute("PRAGMA foreign_keys = ON")
        await self._db.execute(_CREATE_GENERATIONS_TABLE)
        await self._db.execute(_CREATE_ENTRIES_TABLE)
        await self._db.commit()

    async def open(self, generation_id: str) -> Store:
        """Return the store for ``generation_id``, creating the generation if absent."""
        try:
            await self._db.execute(
                _INSERT_GENERATION, (generation_id, datetime.now(UTC).isoformat())
            )
            await self._db.commit()
        except aiosqlite.Error as exc:
            log.error("generation_open_failed", generation_id=generation_id, exc_info=True)
            raise SwCacheError(
                code=ErrorCode.STORE_OPEN_FAILED,
                message=f"Failed to open generation {generation_id}: {exc}",
                suggestion="Check that the cache database path exists and is writable.",
                recoverable=False,
            ) from exc
        return Store(self._db, generation_id)

    async def list(self) -> list[str]:
        """All known generation ids. Empty on read failure."""
        try:
            cursor = await self._db.execute("SELECT id FROM generations ORDER BY created_at")
            return [row[0] for row in await cursor.fetchall()]
        except aiosqlite.Error:
            log.warning("generation_list_error", exc_info=True)
            return []

    async def get(self, generation_id: str) -> Generation | None:
        try:
            cursor = await self._db.execute(
                "SELECT id, created_at FROM generations WHERE id = ?", (generation_id,)
            )
            row = await cursor.fetchone()
        except aiosqlite.Error:
            log.warning("generation_read_error", generation_id=generation_id, exc_info=True)
            return None
        if row is None:
            return None
        return Generation(id=row[0], created_at=datetime.fromisoformat(row[1]))

    async def delete(self, generation_id: str) -> bool:
        """Delete a generation and every entry inside it."""
        try:
            cursor = await self._db.execute(
                "DELETE FROM generations WHERE id = ?", (generation_id,)
            )
            deleted = cursor.rowcount > 0
            await self._db.commit()
        except aiosqlite.Error as exc:
            raise SwCacheError(
                code=ErrorCode.STORE_WRITE_FAILED,
                message=f"Failed to delete generation {generation_id}: {exc}",
                recoverable=True,
            ) from exc
        return deleted

    async def delete_except(self, active_id: str) -> DeleteResult:
        """Delete every generation other than ``active_id``.

        Deletions run concurrently and settle independently: a failure is
        logged and never stops the others.
        """
        stale = [gid for gid in await self.list() if gid != active_id]
        return await self._delete_many(stale)

    async def delete_all(self) -> DeleteResult:
        return await self._delete_many(await self.list())

    async def _delete_many(self, generation_ids: list[str]) -> DeleteResult:
        results = await asyncio.gather(
            *(self.delete(gid) for gid in generation_ids),
            return_exceptions=True,
        )
        outcome = DeleteResult(deleted=[], failed=[])
        for gid, result in zip(generation_ids, results, strict=True):
            if isinstance(result, Exception):
                log.warning("generation_delete_failed", generation_id=gid, error=str(result))
                outcome.failed.append(gid)
            elif result:
                log.info("generation_deleted", generation_id=gid)
                outcome.deleted.append(gid)
        return outcome
