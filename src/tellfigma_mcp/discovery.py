"""Discovery of Figma tabs through Chrome's remote debugging endpoint."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any

import httpx

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 9222
DISCOVERY_TIMEOUT = 5.0

# Most specific first. A design file outranks the figma.com home page.
FIGMA_URL_PATTERNS = (
    "figma.com/design",
    "figma.com/file",
    "figma.com/board",
    "figma.com",
)

FILE_KEY_RE = re.compile(r"/(?:design|file|board|proto)/([A-Za-z0-9]+)")


def extract_file_key(url: str) -> str | None:
    """Return the Figma file key embedded in a file URL, if any."""
    match = FILE_KEY_RE.search(url or "")
    return match.group(1) if match else None


def match_rank(url: str) -> int | None:
    """Index of the first Figma pattern the URL contains, or None."""
    for rank, pattern in enumerate(FIGMA_URL_PATTERNS):
        if pattern in url:
            return rank
    return None


@dataclass(frozen=True)
class TabDescriptor:
    """A Figma page as listed by the debugging endpoint."""

    id: str
    title: str
    url: str
    ws_url: str

    @property
    def file_key(self) -> str | None:
        return extract_file_key(self.url)

    @classmethod
    def from_listing(cls, entry: dict[str, Any]) -> TabDescriptor:
        return cls(
            id=str(entry.get("id", "")),
            title=str(entry.get("title", "")),
            url=str(entry.get("url", "")),
            ws_url=str(entry.get("webSocketDebuggerUrl", "")),
        )


def filter_figma_tabs(entries: list[Any]) -> list[TabDescriptor]:
    """Keep top-level Figma pages, preserving endpoint order.

    Entries without a websocket URL are skipped: Chrome omits it when
    another debugger is already attached to the page.
    """
    tabs: list[TabDescriptor] = []
    for entry in entries:
        if not isinstance(entry, dict) or entry.get("type") != "page":
            continue
        if match_rank(str(entry.get("url", ""))) is None:
            continue
        if not entry.get("webSocketDebuggerUrl"):
            continue
        tabs.append(TabDescriptor.from_listing(entry))
    return tabs


def primary_tab(tabs: list[TabDescriptor]) -> TabDescriptor | None:
    """Pick the tab to auto-connect to.

    The best-ranked pattern wins; among tabs with the same rank, the
    first one in endpoint order.
    """
    best: TabDescriptor | None = None
    best_rank: int | None = None
    for tab in tabs:
        rank = match_rank(tab.url)
        if rank is None:
            continue
        if best_rank is None or rank < best_rank:
            best, best_rank = tab, rank
    return best


class TabDiscovery:
    """Queries ``http://host:port/json`` for open Figma tabs."""

    def __init__(
        self,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.host = host
        self.port = port
        self.base_url = f"http://{host}:{port}"
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=DISCOVERY_TIMEOUT, transport=self._transport
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _get_json(self, endpoint: str) -> Any:
        client = await self._get_client()
        response = await client.get(f"{self.base_url}{endpoint}")
        response.raise_for_status()
        return response.json()

    async def list_tabs(self) -> list[TabDescriptor]:
        """Return the open Figma tabs, or an empty list if Chrome is unreachable."""
        try:
            entries = await self._get_json("/json")
        except (httpx.HTTPError, ValueError) as e:
            logger.debug(f"Discovery endpoint {self.base_url} unavailable: {e}")
            return []
        if not isinstance(entries, list):
            logger.debug(f"Unexpected discovery payload: {type(entries).__name__}")
            return []
        return filter_figma_tabs(entries)

    async def version(self) -> dict[str, Any] | None:
        """Return Chrome's ``/json/version`` info, or None if not listening."""
        try:
            data = await self._get_json("/json/version")
        except (httpx.HTTPError, ValueError):
            return None
        return data if isinstance(data, dict) else None
