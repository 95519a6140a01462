"""Integration test fixtures.

Provides a mocked upstream site and Settings pointing the store at an
isolated on-disk database, so the full Starlette app can be started with its
lifespan under TestClient.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
import pytest
import respx

from swcache.config import Settings

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

ORIGIN = "http://app.test"

INDEX_HTML = "<html><body>index</body></html>"


@pytest.fixture()
def site() -> Iterator[respx.MockRouter]:
    """The upstream origin, serving the app shell and one static asset."""
    with respx.mock(assert_all_called=False) as router:
        router.get(f"{ORIGIN}/").mock(return_value=httpx.Response(200, text=INDEX_HTML))
        router.get(f"{ORIGIN}/index.html").mock(
            return_value=httpx.Response(200, text=INDEX_HTML)
        )
        router.get(f"{ORIGIN}/app.js", name="app_js").mock(
            return_value=httpx.Response(
                200, text="console.log(1)", headers={"content-type": "text/javascript"}
            )
        )
        yield router


@pytest.fixture()
def server_settings(tmp_path: Path) -> Settings:
    return Settings(
        origin=ORIGIN,
        generation={"name": "app-v1", "version": "1.2.3"},
        precache={"core_assets": ["/", "/index.html", "/app.js"], "external_resources": []},
        routing={"dynamic_endpoints": ["script.google.com"]},
        store={"db_path": str(tmp_path / "cache.db")},
    )
