"""HTTP transport and control-channel security middleware."""

from __future__ import annotations

import secrets
from typing import TYPE_CHECKING
from urllib.parse import parse_qs

import structlog
import uvicorn
from starlette.datastructures import Headers
from starlette.responses import Response
from starlette.websockets import WebSocketClose

if TYPE_CHECKING:
    from starlette.types import ASGIApp, Receive, Scope, Send

    from swcache.config import Settings

log = structlog.get_logger()

CONTROL_PATH = "/_swcache/control"


class ControlAuthMiddleware:
    """Pure ASGI middleware guarding the control channel with a shared key.

    The key is accepted as ``Authorization: Bearer <key>`` or, for browser
    WebSocket clients that cannot set headers, as ``?key=<key>``. Proxied
    resource requests are never affected.

    Implemented as pure ASGI (not BaseHTTPMiddleware) so that WebSocket
    scopes pass through untouched.
    """

    def __init__(self, app: ASGIApp, *, control_key: str | None = None) -> None:
        self.app = app
        self.control_key = control_key

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if (
            self.control_key
            and scope["type"] in ("http", "websocket")
            and scope["path"] == CONTROL_PATH
            and not self._authorised(scope)
        ):
            if scope["type"] == "websocket":
                await WebSocketClose(code=1008)(scope, receive, send)
            else:
                await Response("Unauthorized", status_code=401)(scope, receive, send)
            return

        await self.app(scope, receive, send)

    def _authorised(self, scope: Scope) -> bool:
        # Compared as bytes: compare_digest rejects non-ASCII str.
        expected = (self.control_key or "").encode("utf-8")
        headers = Headers(scope=scope)
        auth_header = headers.get("authorization", "")
        if auth_header.startswith("Bearer ") and secrets.compare_digest(
            auth_header[7:].encode("utf-8"), expected
        ):
            return True
        query = parse_qs(scope.get("query_string", b"").decode("latin-1"))
        candidates = query.get("key", [])
        return any(secrets.compare_digest(c.encode("utf-8"), expected) for c in candidates)


def run_http_server(app: ASGIApp, settings: Settings) -> None:
    """Serve the caching front with uvicorn."""
    http_log = log.bind(transport="http")

    control_key = settings.server.control_key or None
    if control_key is None:
        http_log.warning("control_auth_disabled")

    secured_app = ControlAuthMiddleware(app, control_key=control_key)

    uvicorn.run(
        secured_app,
        host=settings.server.host,
        port=settings.server.port,
        log_config=None,  # Disable uvicorn's default logging; structlog handles it
    )
