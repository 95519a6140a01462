"""Request classification.

Each intercepted request maps to exactly one strategy. Rules are evaluated
in order and the first match wins:

  0. non-HTTP scheme (browser extensions, data:)  → bypass
  1. non-GET method                               → bypass
  2. configured dynamic endpoint                  → network-only
  3. navigation, or an app-shell path             → network-first
  4. cross-origin                                 → network-first
  5. same-origin static asset                     → cache-first

App-shell and dynamic content must reflect the latest deployment; static
assets are invalidated wholesale by generation rotation.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING
from urllib.parse import urlparse

from swcache.network import is_same_origin

if TYPE_CHECKING:
    from collections.abc import Iterable

    from swcache.models.request import ResourceRequest


class Strategy(StrEnum):
    BYPASS = "bypass"
    NETWORK_ONLY = "network-only"
    NETWORK_FIRST = "network-first"
    CACHE_FIRST = "cache-first"


@dataclass(frozen=True)
class Route:
    strategy: Strategy
    is_document: bool = False


@dataclass(frozen=True)
class DynamicEndpoint:
    """A host (matched by suffix) with an optional path prefix."""

    host: str
    path_prefix: str = ""

    @classmethod
    def parse(cls, value: str) -> DynamicEndpoint:
        # Accept "host", "host/path" and full URLs.
        if "://" in value:
            parsed = urlparse(value)
            return cls(host=(parsed.hostname or "").lower(), path_prefix=parsed.path.rstrip("/"))
        host, _, path = value.partition("/")
        return cls(host=host.lower(), path_prefix=f"/{path}".rstrip("/") if path else "")

    def matches(self, hostname: str, path: str) -> bool:
        if hostname != self.host and not hostname.endswith(f".{self.host}"):
            return False
        if not self.path_prefix:
            return True
        return path == self.path_prefix or path.startswith(f"{self.path_prefix}/")


class StrategyRouter:
    """Classifies requests relative to the controller's own origin."""

    def __init__(
        self,
        origin: str,
        *,
        dynamic_endpoints: Iterable[str] = (),
        app_shell_paths: Iterable[str] = ("/", "/index.html", "/manifest.json"),
    ) -> None:
        self._origin = origin
        self._dynamic = tuple(DynamicEndpoint.parse(value) for value in dynamic_endpoints)
        self._app_shell = frozenset(app_shell_paths)

    def classify(self, request: ResourceRequest) -> Route:
        parsed = urlparse(request.url)
        if parsed.scheme not in ("http", "https"):
            return Route(Strategy.BYPASS)

        if request.method != "GET":
            return Route(Strategy.BYPASS)

        hostname = (parsed.hostname or "").lower()
        path = parsed.path or "/"
        if any(endpoint.matches(hostname, path) for endpoint in self._dynamic):
            return Route(Strategy.NETWORK_ONLY)

        same_origin = is_same_origin(request.url, self._origin)
        if request.is_navigation:
            return Route(Strategy.NETWORK_FIRST, is_document=True)
        # Directory and index pages at any depth are shell documents too.
        if same_origin and (path in self._app_shell or path.endswith(("/", "/index.html"))):
            return Route(Strategy.NETWORK_FIRST, is_document=path.endswith(("/", ".html")))

        if not same_origin:
            return Route(Strategy.NETWORK_FIRST)

        return Route(Strategy.CACHE_FIRST)
