"""Tests for tab discovery: filtering, primary selection, endpoint handling."""

from __future__ import annotations

from typing import Any

import httpx
import pytest

from tellfigma_mcp.discovery import (
    TabDiscovery,
    extract_file_key,
    filter_figma_tabs,
    primary_tab,
)


def _entry(
    id: str,
    url: str,
    type: str = "page",
    title: str = "",
    ws: bool = True,
) -> dict[str, Any]:
    entry: dict[str, Any] = {"id": id, "title": title or id, "url": url, "type": type}
    if ws:
        entry["webSocketDebuggerUrl"] = f"ws://127.0.0.1:9222/devtools/page/{id}"
    return entry


LISTING = [
    _entry("home", "https://www.figma.com/files/recent"),
    _entry("docs", "https://developer.mozilla.org/"),
    _entry("board", "https://www.figma.com/board/B0ard/Retro"),
    _entry("sw", "https://www.figma.com/design/Abc/x", type="service_worker"),
    _entry("design", "https://www.figma.com/design/Abc123/Landing"),
    _entry("ext", "chrome-extension://abc/popup.html", type="background_page"),
    _entry("file", "https://www.figma.com/file/Old456/Legacy"),
]


# =============================================================================
# Filtering
# =============================================================================


class TestFilterFigmaTabs:
    def test_keeps_matching_pages_in_endpoint_order(self) -> None:
        tabs = filter_figma_tabs(LISTING)
        assert [t.id for t in tabs] == ["home", "board", "design", "file"]

    def test_skips_non_page_targets(self) -> None:
        tabs = filter_figma_tabs([_entry("sw", "https://www.figma.com/design/A/b", type="worker")])
        assert tabs == []

    def test_skips_tabs_without_websocket(self) -> None:
        tabs = filter_figma_tabs([_entry("busy", "https://www.figma.com/design/A/b", ws=False)])
        assert tabs == []

    def test_ignores_non_dict_entries(self) -> None:
        assert filter_figma_tabs(["junk", None, 3]) == []

    def test_descriptor_fields(self) -> None:
        (tab,) = filter_figma_tabs([_entry("7", "https://www.figma.com/design/K3y/Home", title="Home")])
        assert tab.id == "7"
        assert tab.title == "Home"
        assert tab.ws_url.endswith("/devtools/page/7")
        assert tab.file_key == "K3y"


class TestPrimaryTab:
    def test_design_outranks_board_and_home(self) -> None:
        tab = primary_tab(filter_figma_tabs(LISTING))
        assert tab is not None and tab.id == "design"

    def test_first_wins_within_same_pattern(self) -> None:
        tabs = filter_figma_tabs(
            [
                _entry("a", "https://www.figma.com/design/A/one"),
                _entry("b", "https://www.figma.com/design/B/two"),
            ]
        )
        tab = primary_tab(tabs)
        assert tab is not None and tab.id == "a"

    def test_falls_back_to_generic_figma_page(self) -> None:
        tabs = filter_figma_tabs([_entry("home", "https://www.figma.com/")])
        tab = primary_tab(tabs)
        assert tab is not None and tab.id == "home"

    def test_empty(self) -> None:
        assert primary_tab([]) is None


class TestExtractFileKey:
    @pytest.mark.parametrize(
        "url,key",
        [
            ("https://www.figma.com/design/Abc123/Landing?node-id=1-2", "Abc123"),
            ("https://www.figma.com/file/Old456/Legacy", "Old456"),
            ("https://www.figma.com/board/B0ard/Retro", "B0ard"),
            ("https://www.figma.com/files/recent", None),
            ("", None),
        ],
    )
    def test_extract(self, url: str, key: str | None) -> None:
        assert extract_file_key(url) == key


# =============================================================================
# Endpoint
# =============================================================================


class TestTabDiscovery:
    @pytest.mark.asyncio
    async def test_list_tabs_queries_json_listing(self) -> None:
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            return httpx.Response(200, json=LISTING)

        discovery = TabDiscovery(port=9333, transport=httpx.MockTransport(handler))
        tabs = await discovery.list_tabs()
        await discovery.close()

        assert seen == ["http://127.0.0.1:9333/json"]
        assert [t.id for t in tabs] == ["home", "board", "design", "file"]

    @pytest.mark.asyncio
    async def test_connection_refused_returns_empty(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("Connection refused", request=request)

        discovery = TabDiscovery(transport=httpx.MockTransport(handler))
        assert await discovery.list_tabs() == []
        assert await discovery.version() is None

    @pytest.mark.asyncio
    async def test_unexpected_payload_returns_empty(self) -> None:
        discovery = TabDiscovery(
            transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"oops": 1}))
        )
        assert await discovery.list_tabs() == []

    @pytest.mark.asyncio
    async def test_invalid_json_returns_empty(self) -> None:
        discovery = TabDiscovery(
            transport=httpx.MockTransport(lambda r: httpx.Response(200, text="not json"))
        )
        assert await discovery.list_tabs() == []

    @pytest.mark.asyncio
    async def test_empty_listing(self) -> None:
        discovery = TabDiscovery(
            transport=httpx.MockTransport(lambda r: httpx.Response(200, json=[]))
        )
        assert await discovery.list_tabs() == []

    @pytest.mark.asyncio
    async def test_version(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/json/version"
            return httpx.Response(200, json={"Browser": "Chrome/126.0"})

        discovery = TabDiscovery(transport=httpx.MockTransport(handler))
        assert await discovery.version() == {"Browser": "Chrome/126.0"}
