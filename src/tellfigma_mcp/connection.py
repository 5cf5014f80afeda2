"""Chrome DevTools Protocol connection to a single Figma tab."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from typing import Any

from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from .discovery import TabDescriptor
from .errors import (
    CDPError,
    CDPProtocolError,
    CDPTimeoutError,
    TransportClosedError,
)

logger = logging.getLogger(__name__)

# Domains needed for remote evaluation and page lifecycle events.
REQUIRED_DOMAINS = ("Runtime", "Page")

CONNECT_TIMEOUT = 10.0
COMMAND_TIMEOUT = 30.0
PROBE_TIMEOUT = 5.0
# Extra client-side wait on top of Chrome's own evaluation timeout, so
# Chrome gets the chance to report the timeout itself.
TIMEOUT_GRACE = 2.0
# Full-page screenshots of a large canvas easily exceed the 1 MiB default.
MAX_MESSAGE_SIZE = 64 * 1024 * 1024
TERMINATED_MESSAGE = "Execution was terminated"

CloseCallback = Callable[["CDPConnection"], None]


class CDPConnection:
    """A live CDP websocket session bound to one tab.

    Responses are matched to requests by message id in a background reader
    task. When the socket closes on its own, every pending request fails
    with :class:`TransportClosedError` and ``on_close`` fires once.
    """

    def __init__(
        self,
        tab: TabDescriptor,
        websocket: Any,
        on_close: CloseCallback | None = None,
    ) -> None:
        self.tab_id = tab.id
        self.title = tab.title
        self.url = tab.url
        self._ws = websocket
        self._on_close = on_close
        self._next_id = 0
        self._pending: dict[int, asyncio.Future[dict[str, Any]]] = {}
        self._closed = False
        self._closing = False
        self._reader: asyncio.Task[None] | None = None

    @classmethod
    async def open(
        cls, tab: TabDescriptor, on_close: CloseCallback | None = None
    ) -> CDPConnection:
        """Connect to ``tab`` and enable the required domains."""
        try:
            websocket = await connect(
                tab.ws_url, max_size=MAX_MESSAGE_SIZE, open_timeout=CONNECT_TIMEOUT
            )
        except (OSError, WebSocketException, asyncio.TimeoutError) as e:
            raise TransportClosedError(
                f'Cannot connect to tab "{tab.title}": {e}'
            ) from e

        conn = cls(tab, websocket, on_close)
        conn.start()
        try:
            for domain in REQUIRED_DOMAINS:
                await conn.send(f"{domain}.enable")
        except CDPError:
            await conn.close()
            raise
        logger.info(f'Connected to Figma tab "{tab.title}" ({tab.id})')
        return conn

    def start(self) -> None:
        """Start the reader task."""
        if self._reader is None:
            self._reader = asyncio.create_task(self._read_loop())

    @property
    def closed(self) -> bool:
        return self._closed

    # -------------------------------------------------------------------------
    # Reader
    # -------------------------------------------------------------------------

    async def _read_loop(self) -> None:
        try:
            async for raw in self._ws:
                self._dispatch(raw)
        except ConnectionClosed as e:
            logger.debug(f"Websocket for tab {self.tab_id} closed: {e}")
        except Exception:
            logger.exception(f"CDP reader for tab {self.tab_id} failed")
        finally:
            self._mark_closed()

    def _dispatch(self, raw: str | bytes) -> None:
        try:
            message = json.loads(raw)
        except ValueError:
            logger.warning(f"Ignoring malformed CDP message from tab {self.tab_id}")
            return
        if not isinstance(message, dict):
            logger.warning(f"Ignoring non-object CDP message from tab {self.tab_id}")
            return

        msg_id = message.get("id")
        if msg_id is not None:
            future = self._pending.pop(msg_id, None)
            if future is None or future.done():
                return
            if "error" in message:
                error = message["error"]
                future.set_exception(
                    CDPProtocolError(
                        error.get("message", "Unknown CDP error"), error.get("code")
                    )
                )
            else:
                future.set_result(message.get("result", {}))
        elif message.get("method") == "Page.frameNavigated":
            frame = message.get("params", {}).get("frame", {})
            if not frame.get("parentId") and frame.get("url"):
                self.url = frame["url"]

    def _mark_closed(self) -> None:
        if self._closed:
            return
        self._closed = True
        for future in self._pending.values():
            if not future.done():
                future.set_exception(
                    TransportClosedError(f"Connection to tab {self.tab_id} closed")
                )
        self._pending.clear()
        if self._closing:
            return
        logger.warning(
            f'Lost connection to tab "{self.title}", will reconnect on next tool call'
        )
        if self._on_close is not None:
            self._on_close(self)

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    async def send(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        timeout: float = COMMAND_TIMEOUT,
    ) -> dict[str, Any]:
        """Send a CDP command and wait for its result."""
        if self._closed:
            raise TransportClosedError(f"Connection to tab {self.tab_id} is closed")

        self._next_id += 1
        msg_id = self._next_id
        future: asyncio.Future[dict[str, Any]] = (
            asyncio.get_running_loop().create_future()
        )
        self._pending[msg_id] = future
        payload = {"id": msg_id, "method": method, "params": params or {}}
        try:
            await self._ws.send(json.dumps(payload))
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError as e:
            raise CDPTimeoutError(
                f"{method} timeout: no reply after {timeout:g}s"
            ) from e
        except ConnectionClosed as e:
            raise TransportClosedError(
                f"Connection to tab {self.tab_id} closed: {e}"
            ) from e
        finally:
            self._pending.pop(msg_id, None)

    async def evaluate(
        self,
        expression: str,
        await_promise: bool = False,
        return_by_value: bool = True,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Run ``Runtime.evaluate`` and return the raw protocol result.

        ``timeout`` (seconds) is enforced by Chrome and, with a small grace
        period, on our side too.
        """
        params: dict[str, Any] = {
            "expression": expression,
            "awaitPromise": await_promise,
            "returnByValue": return_by_value,
        }
        wait = COMMAND_TIMEOUT
        if timeout is not None:
            params["timeout"] = int(timeout * 1000)
            wait = timeout + TIMEOUT_GRACE
        try:
            return await self.send("Runtime.evaluate", params, timeout=wait)
        except CDPProtocolError as e:
            # Chrome reports an overrun budget as a terminated execution.
            if timeout is not None and str(e) == TERMINATED_MESSAGE:
                raise CDPTimeoutError(
                    f"Runtime.evaluate timeout: execution exceeded {timeout:g}s"
                ) from e
            raise

    async def probe(self) -> bool:
        """Check that the tab still answers a trivial evaluation."""
        if self._closed:
            return False
        try:
            result = await self.evaluate("1+1", timeout=PROBE_TIMEOUT)
        except CDPError as e:
            logger.debug(f"Liveness probe failed for tab {self.tab_id}: {e}")
            return False
        return result.get("result", {}).get("value") == 2

    async def close(self) -> None:
        """Close the websocket without triggering ``on_close``."""
        self._closing = True
        try:
            await self._ws.close()
        except (OSError, WebSocketException) as e:
            logger.debug(f"Error closing websocket for tab {self.tab_id}: {e}")
        if self._reader is not None and not self._reader.done():
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
        self._mark_closed()
