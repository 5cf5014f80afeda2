"""Registry of CDP connections to Figma tabs.

The :class:`SessionManager` is the single owner of "which tabs are
connected" and "which tab is active". Every tool obtains its connection
through :meth:`SessionManager.ensure_active`, which reconnects
transparently when the previous connection died.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from .connection import CDPConnection, CloseCallback
from .discovery import TabDescriptor, TabDiscovery, primary_tab
from .errors import NoTargetError, TabNotFoundError

logger = logging.getLogger(__name__)

DISCOVERY_ATTEMPTS = 3
DISCOVERY_RETRY_DELAY = 2.0

NO_TAB_MESSAGE = (
    "No Figma tab found. Please open a Figma design file in Chrome, then try again."
)

Connector = Callable[[TabDescriptor, CloseCallback], Awaitable[CDPConnection]]


@dataclass
class TabStatus:
    """One row of the tab listing."""

    tab: TabDescriptor
    connected: bool
    active: bool


@dataclass
class ActiveTab:
    """Identity of the active connection."""

    id: str
    title: str
    url: str


def resolve_tab(identifier: str, tabs: list[TabDescriptor]) -> TabDescriptor | None:
    """Resolve a user-supplied tab reference.

    Tried in order, the first strategy with any match wins: exact id,
    title substring, URL substring (both case-insensitive), 1-based index.
    """
    for tab in tabs:
        if tab.id == identifier:
            return tab

    needle = identifier.lower()
    for tab in tabs:
        if needle in tab.title.lower():
            return tab
    for tab in tabs:
        if needle in tab.url.lower():
            return tab

    if identifier.strip().isdigit():
        index = int(identifier.strip())
        if 1 <= index <= len(tabs):
            return tabs[index - 1]
    return None


class SessionManager:
    """Owns the tab-id -> connection map and the active tab pointer."""

    def __init__(
        self,
        discovery: TabDiscovery,
        connector: Connector = CDPConnection.open,
        attempts: int = DISCOVERY_ATTEMPTS,
        retry_delay: float = DISCOVERY_RETRY_DELAY,
    ) -> None:
        self.discovery = discovery
        self._connector = connector
        self._attempts = attempts
        self._retry_delay = retry_delay
        self._connections: dict[str, CDPConnection] = {}
        self._active_id: str | None = None
        # Tab to prefer when re-establishing a lost active connection.
        self._last_active_id: str | None = None
        self._lock = asyncio.Lock()

    @property
    def active_id(self) -> str | None:
        return self._active_id

    # -------------------------------------------------------------------------
    # State updates
    # -------------------------------------------------------------------------

    def _discard(self, tab_id: str, conn: CDPConnection | None = None) -> None:
        """Forget ``tab_id``'s connection and clear the active pointer if needed.

        With ``conn`` given, nothing happens unless the map still holds that
        exact connection, so a late close event from a replaced connection
        cannot evict its successor.
        """
        current = self._connections.get(tab_id)
        if conn is not None and current is not conn:
            return
        self._connections.pop(tab_id, None)
        if self._active_id == tab_id:
            self._last_active_id = tab_id
            self._active_id = None
            logger.info(f"Active tab {tab_id} disconnected")

    def _on_transport_closed(self, conn: CDPConnection) -> None:
        self._discard(conn.tab_id, conn)

    def _live_connection(self, tab_id: str) -> CDPConnection | None:
        conn = self._connections.get(tab_id)
        if conn is None or conn.closed:
            return None
        return conn

    async def _connect(self, tab: TabDescriptor) -> CDPConnection:
        existing = self._live_connection(tab.id)
        if existing is not None:
            if await existing.probe():
                return existing
            self._discard(tab.id, existing)
            await existing.close()

        logger.info(f'Connecting to Figma tab: "{tab.title}"')
        conn = await self._connector(tab, self._on_transport_closed)
        self._connections[tab.id] = conn
        return conn

    async def _discover_with_retry(self) -> list[TabDescriptor]:
        for attempt in range(1, self._attempts + 1):
            tabs = await self.discovery.list_tabs()
            if tabs:
                return tabs
            if attempt < self._attempts:
                logger.info(
                    f"Waiting for Figma tab... (attempt {attempt}/{self._attempts})"
                )
                await asyncio.sleep(self._retry_delay)
        return []

    # -------------------------------------------------------------------------
    # Public operations
    # -------------------------------------------------------------------------

    async def list_tabs(self) -> list[TabStatus]:
        """List open Figma tabs with their connection state."""
        tabs = await self.discovery.list_tabs()
        return [
            TabStatus(
                tab=tab,
                connected=self._live_connection(tab.id) is not None,
                active=tab.id == self._active_id,
            )
            for tab in tabs
        ]

    async def ensure_active(self) -> CDPConnection:
        """Return a live connection to the active tab, connecting if needed."""
        async with self._lock:
            if self._active_id is not None:
                conn = self._connections.get(self._active_id)
                if conn is not None and await conn.probe():
                    return conn
                logger.info("Connection lost, reconnecting...")
                self._discard(self._active_id)
                if conn is not None:
                    await conn.close()

            tabs = await self._discover_with_retry()
            if not tabs:
                raise NoTargetError(NO_TAB_MESSAGE)

            target = None
            if self._last_active_id is not None:
                target = next(
                    (tab for tab in tabs if tab.id == self._last_active_id), None
                )
            if target is None:
                target = primary_tab(tabs)
            if target is None:
                raise NoTargetError(NO_TAB_MESSAGE)

            conn = await self._connect(target)
            self._active_id = target.id
            self._last_active_id = target.id
            return conn

    async def switch_to(self, identifier: str) -> TabDescriptor:
        """Make the tab matching ``identifier`` the active one."""
        async with self._lock:
            tabs = await self.discovery.list_tabs()
            if not tabs:
                raise NoTargetError(NO_TAB_MESSAGE)
            target = resolve_tab(identifier, tabs)
            if target is None:
                raise TabNotFoundError(identifier, tabs)

            await self._connect(target)
            self._active_id = target.id
            self._last_active_id = target.id
            logger.info(f'Switched active tab to "{target.title}"')
            return target

    def update_active_url(self, url: str) -> None:
        """Record where the active tab ended up after a navigation."""
        if self._active_id is None:
            return
        conn = self._connections.get(self._active_id)
        if conn is not None:
            conn.url = url

    def get_active_info(self) -> ActiveTab | None:
        """Describe the active connection without touching the network."""
        if self._active_id is None:
            return None
        conn = self._connections.get(self._active_id)
        if conn is None:
            return None
        return ActiveTab(id=conn.tab_id, title=conn.title, url=conn.url)

    async def close(self) -> None:
        """Close every connection. Used at process shutdown."""
        connections = list(self._connections.values())
        self._connections.clear()
        self._active_id = None
        self._last_active_id = None
        for conn in connections:
            await conn.close()
        await self.discovery.close()
