"""Exception types raised by the session layer and the tool handlers."""

from __future__ import annotations

from typing import Any


class BridgeError(Exception):
    """Base class for all errors reported back to the MCP caller."""


class NoTargetError(BridgeError):
    """No Figma tab could be found in the browser."""


class TabNotFoundError(BridgeError):
    """A switch request matched none of the open Figma tabs."""

    def __init__(self, identifier: str, candidates: list[Any]) -> None:
        self.identifier = identifier
        self.candidates = candidates
        lines = [f'No Figma tab matches "{identifier}". Open tabs:']
        for i, tab in enumerate(candidates, start=1):
            lines.append(f'  {i}. "{tab.title}" ({tab.url}) ID: {tab.id}')
        super().__init__("\n".join(lines))


class CDPError(BridgeError):
    """Base class for Chrome DevTools Protocol failures."""


class CDPProtocolError(CDPError):
    """Chrome answered a command with an error object."""

    def __init__(self, message: str, code: int | None = None) -> None:
        self.code = code
        super().__init__(message)


class CDPTimeoutError(CDPError):
    """A command got no reply within its time budget."""


class TransportClosedError(CDPError):
    """The websocket to the tab is closed."""


class MissingCredentialError(BridgeError):
    """A REST-backed tool was called without a Figma access token."""


class ChromeLaunchError(BridgeError):
    """Chrome is not reachable on the debugging port and could not be started."""
