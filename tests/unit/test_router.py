"""Unit tests for swcache.router."""

from __future__ import annotations

import pytest

from swcache.models.request import ResourceRequest
from swcache.router import DynamicEndpoint, Route, Strategy, StrategyRouter

ORIGIN = "http://app.test"


@pytest.fixture()
def router() -> StrategyRouter:
    return StrategyRouter(
        ORIGIN,
        dynamic_endpoints=["script.google.com", "api.app.test/exec"],
    )


def _classify(router: StrategyRouter, url: str, **kwargs: str) -> Route:
    return router.classify(ResourceRequest(url=url, **kwargs))


# ---------------------------------------------------------------------------
# DynamicEndpoint
# ---------------------------------------------------------------------------


class TestDynamicEndpoint:
    def test_parse_host(self) -> None:
        assert DynamicEndpoint.parse("Script.Google.com") == DynamicEndpoint("script.google.com")

    def test_parse_host_and_path(self) -> None:
        assert DynamicEndpoint.parse("api.app.test/exec/") == DynamicEndpoint(
            "api.app.test", "/exec"
        )

    def test_parse_full_url(self) -> None:
        assert DynamicEndpoint.parse("https://api.app.test/exec") == DynamicEndpoint(
            "api.app.test", "/exec"
        )

    def test_subdomain_matches(self) -> None:
        assert DynamicEndpoint("google.com").matches("script.google.com", "/")

    def test_lookalike_host_does_not_match(self) -> None:
        assert not DynamicEndpoint("google.com").matches("notgoogle.com", "/")

    def test_path_prefix_is_segment_aware(self) -> None:
        endpoint = DynamicEndpoint("api.app.test", "/exec")
        assert endpoint.matches("api.app.test", "/exec")
        assert endpoint.matches("api.app.test", "/exec/run")
        assert not endpoint.matches("api.app.test", "/executive")


# ---------------------------------------------------------------------------
# StrategyRouter
# ---------------------------------------------------------------------------


class TestBypass:
    @pytest.mark.parametrize("method", ["POST", "PUT", "DELETE", "head"])
    def test_non_get_bypasses(self, router: StrategyRouter, method: str) -> None:
        route = _classify(router, f"{ORIGIN}/api/orders", method=method)
        assert route.strategy is Strategy.BYPASS

    def test_non_get_to_dynamic_endpoint_bypasses(self, router: StrategyRouter) -> None:
        route = _classify(router, "https://script.google.com/macros/exec", method="POST")
        assert route.strategy is Strategy.BYPASS

    @pytest.mark.parametrize(
        "url",
        ["chrome-extension://abcdef/content.js", "moz-extension://1234/icon.png"],
    )
    def test_extension_schemes_bypass(self, router: StrategyRouter, url: str) -> None:
        assert _classify(router, url).strategy is Strategy.BYPASS


class TestNetworkOnly:
    def test_dynamic_host(self, router: StrategyRouter) -> None:
        route = _classify(router, "https://script.google.com/macros/s/abc/exec")
        assert route.strategy is Strategy.NETWORK_ONLY

    def test_dynamic_path_prefix(self, router: StrategyRouter) -> None:
        assert _classify(router, "https://api.app.test/exec/run").strategy is (
            Strategy.NETWORK_ONLY
        )

    def test_same_host_outside_prefix_is_not_dynamic(self, router: StrategyRouter) -> None:
        assert _classify(router, "https://api.app.test/other").strategy is (
            Strategy.NETWORK_FIRST
        )

    def test_dynamic_wins_over_navigation(self, router: StrategyRouter) -> None:
        route = _classify(router, "https://script.google.com/app", mode="navigate")
        assert route.strategy is Strategy.NETWORK_ONLY


class TestNetworkFirst:
    def test_navigation_is_document(self, router: StrategyRouter) -> None:
        route = _classify(router, f"{ORIGIN}/orders/42", mode="navigate")
        assert route == Route(Strategy.NETWORK_FIRST, is_document=True)

    def test_document_destination_is_document(self, router: StrategyRouter) -> None:
        route = _classify(router, f"{ORIGIN}/about", destination="document")
        assert route == Route(Strategy.NETWORK_FIRST, is_document=True)

    @pytest.mark.parametrize("path", ["/", "/index.html"])
    def test_shell_documents(self, router: StrategyRouter, path: str) -> None:
        route = _classify(router, f"{ORIGIN}{path}")
        assert route == Route(Strategy.NETWORK_FIRST, is_document=True)

    @pytest.mark.parametrize("path", ["/shop/", "/docs/guide/", "/sub/index.html"])
    def test_nested_directory_and_index_pages(self, router: StrategyRouter, path: str) -> None:
        route = _classify(router, f"{ORIGIN}{path}")
        assert route == Route(Strategy.NETWORK_FIRST, is_document=True)

    def test_nested_index_on_other_origin_is_not_document(self, router: StrategyRouter) -> None:
        route = _classify(router, "https://cdn.test/sub/index.html")
        assert route == Route(Strategy.NETWORK_FIRST, is_document=False)

    def test_manifest_is_network_first_not_document(self, router: StrategyRouter) -> None:
        route = _classify(router, f"{ORIGIN}/manifest.json")
        assert route == Route(Strategy.NETWORK_FIRST, is_document=False)

    def test_cross_origin(self, router: StrategyRouter) -> None:
        route = _classify(router, "https://cdnjs.cloudflare.com/ajax/libs/all.min.css")
        assert route == Route(Strategy.NETWORK_FIRST, is_document=False)

    def test_other_port_is_cross_origin(self, router: StrategyRouter) -> None:
        assert _classify(router, "http://app.test:8080/app.js").strategy is (
            Strategy.NETWORK_FIRST
        )

    def test_shell_path_on_other_origin_is_not_document(self, router: StrategyRouter) -> None:
        route = _classify(router, "https://cdn.example.com/index.html")
        assert route == Route(Strategy.NETWORK_FIRST, is_document=False)


class TestCacheFirst:
    @pytest.mark.parametrize("path", ["/app.js", "/css/style.css", "/icons/icon-192.png"])
    def test_same_origin_static_asset(self, router: StrategyRouter, path: str) -> None:
        assert _classify(router, f"{ORIGIN}{path}").strategy is Strategy.CACHE_FIRST

    def test_custom_app_shell_paths(self) -> None:
        router = StrategyRouter(ORIGIN, app_shell_paths=["/shell.html"])
        assert _classify(router, f"{ORIGIN}/manifest.json").strategy is Strategy.CACHE_FIRST
        assert _classify(router, f"{ORIGIN}/about.html").strategy is Strategy.CACHE_FIRST
        assert _classify(router, f"{ORIGIN}/shell.html").strategy is Strategy.NETWORK_FIRST
