"""Caching front entrypoint.

Responsibilities (and nothing more):
- Configure structlog
- Create the CacheWorker inside the Starlette lifespan and drive it to ACTIVE
- Proxy every request for the upstream origin through the worker
- Expose the control channel over a WebSocket
"""

from __future__ import annotations

import asyncio
import logging
import sys
import uuid
from contextlib import asynccontextmanager, suppress
from typing import TYPE_CHECKING

import structlog
from starlette.applications import Starlette
from starlette.responses import JSONResponse, Response
from starlette.routing import Route, WebSocketRoute
from starlette.websockets import WebSocket, WebSocketDisconnect

from swcache import __version__
from swcache.config import Settings
from swcache.errors import SwCacheError
from swcache.models.request import ResourceRequest
from swcache.transport import CONTROL_PATH, run_http_server
from swcache.worker import ActivateEvent, FetchEvent, InstallEvent, MessageEvent, open_worker

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from starlette.requests import Request

    from swcache.fetcher import FetchOutcome
    from swcache.worker import CacheWorker

log = structlog.get_logger()

PROXY_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]

# Describe the client's connection to us, not the resource upstream.
_UNFORWARDED_HEADERS = frozenset(
    {"host", "connection", "keep-alive", "transfer-encoding", "upgrade", "content-length"}
)


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------


def setup_logging(settings: Settings) -> None:
    """Configure structlog. Called once at startup before any log statements."""
    log_level = logging.getLevelNamesMapping()[settings.logging.level]

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.logging.format == "json":
        processors = [*shared_processors, structlog.processors.JSONRenderer()]
    else:
        processors = [*shared_processors, structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: Starlette) -> AsyncGenerator[None, None]:
    """Install and activate the worker before the first request is served."""
    settings: Settings = app.state.settings

    log.info(
        "server_starting",
        version=__version__,
        generation_id=settings.generation.name,
        origin=settings.origin,
    )

    async with open_worker(settings) as worker:
        app.state.worker = worker
        await worker.dispatch(InstallEvent())
        # No earlier instance serves from this process, so nothing holds the gate.
        worker.lifecycle.release_previous()
        await worker.dispatch(ActivateEvent())

        log.info(
            "server_started",
            generation_id=settings.generation.name,
            state=worker.lifecycle.state,
        )
        try:
            yield
        finally:
            log.info("server_stopping")


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


def _resource_request(request: Request, origin: str, body: bytes) -> ResourceRequest:
    target = f"{origin}{request.url.path}"
    if request.url.query:
        target = f"{target}?{request.url.query}"
    return ResourceRequest(
        url=target,
        method=request.method,
        destination=request.headers.get("sec-fetch-dest", ""),
        mode=request.headers.get("sec-fetch-mode", "cors"),
        headers=tuple(
            (name, value)
            for name, value in request.headers.items()
            if name.lower() not in _UNFORWARDED_HEADERS
        ),
        body=body,
    )


def _to_response(outcome: FetchOutcome) -> Response:
    snapshot = outcome.response
    response = Response(content=snapshot.body, status_code=snapshot.status)
    for name, value in snapshot.headers:
        if name.lower() != "content-length":
            response.headers.append(name, value)
    response.headers["x-swcache-strategy"] = outcome.route.strategy
    return response


async def proxy(request: Request) -> Response:
    """Serve one resource request through the worker."""
    worker: CacheWorker = request.app.state.worker
    resource = _resource_request(request, worker.settings.origin, await request.body())
    try:
        outcome: FetchOutcome = await worker.dispatch(FetchEvent(resource))  # type: ignore[assignment]
    except SwCacheError as exc:
        log.warning("fetch_failed", url=resource.url, code=exc.code, message=exc.message)
        return JSONResponse(exc.to_dict(), status_code=502)
    except Exception:
        log.error("fetch_unexpected_error", url=resource.url, exc_info=True)
        raise
    return _to_response(outcome)


class WebSocketClient:
    """A foreground client connected over the control WebSocket."""

    def __init__(self, websocket: WebSocket) -> None:
        self._id = uuid.uuid4().hex
        self._websocket = websocket
        self.controller: str | None = None

    @property
    def id(self) -> str:
        return self._id

    async def post_message(self, message: dict) -> None:
        await self._websocket.send_json(message)


async def _handle_message(worker: CacheWorker, data: str, client: WebSocketClient) -> None:
    try:
        await worker.dispatch(MessageEvent(data=data, source=client))
    except Exception:
        # The client may have gone away before its reply was sent.
        log.warning("control_message_failed", client_id=client.id, exc_info=True)


async def control_endpoint(websocket: WebSocket) -> None:
    """Each frame is handled in its own task, so a slow message never blocks the next."""
    worker: CacheWorker = websocket.app.state.worker
    await websocket.accept()

    client = WebSocketClient(websocket)
    if worker.lifecycle.is_active:
        client.controller = worker.lifecycle.generation_id
    worker.clients.register(client)
    pending: set[asyncio.Task[None]] = set()
    try:
        with suppress(WebSocketDisconnect):
            while True:
                data = await websocket.receive_text()
                task = asyncio.create_task(_handle_message(worker, data, client))
                pending.add(task)
                task.add_done_callback(pending.discard)
    finally:
        worker.clients.unregister(client)
        if pending:
            await asyncio.gather(*pending)


def create_app(settings: Settings | None = None) -> Starlette:
    app = Starlette(
        routes=[
            WebSocketRoute(CONTROL_PATH, control_endpoint),
            Route("/{path:path}", proxy, methods=PROXY_METHODS),
        ],
        lifespan=lifespan,
    )
    app.state.settings = settings if settings is not None else Settings()
    return app


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


def main() -> None:
    settings = Settings()
    setup_logging(settings)
    run_http_server(create_app(settings), settings)


if __name__ == "__main__":
    main()
