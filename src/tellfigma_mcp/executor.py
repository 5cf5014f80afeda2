"""Remote code execution in the active Figma tab.

Every tool that touches the canvas goes through :class:`CodeExecutor`.
Outcome classification (:func:`classify_evaluation`) is kept free of any
transport so it can be exercised on plain protocol payloads.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .errors import BridgeError
from .sessions import SessionManager

logger = logging.getLogger(__name__)

EXECUTION_TIMEOUT = 30.0

NO_VALUE_MESSAGE = "Code executed successfully (no return value)."


def _contains(*needles: str) -> Callable[[str], bool]:
    return lambda text: any(needle in text for needle in needles)


# Checked in order; only the first matching entry contributes a hint.
ERROR_HINTS: list[tuple[Callable[[str], bool], str]] = [
    (
        _contains("figma is not defined", "figma is undefined"),
        "The Figma Plugin API is not available. Open any Figma plugin "
        "(e.g. Iconify), close it, then try again. This activates the figma global.",
    ),
    (
        _contains("loadFontAsync"),
        "You must call await figma.loadFontAsync({ family, style }) before "
        "setting characters on a text node.",
    ),
    (
        _contains("Cannot read properties of null"),
        "A node was null. Use figma.currentPage.findOne() carefully, it "
        "returns null if nothing matches.",
    ),
    (
        _contains("not a function"),
        "Check that you're calling the right method. E.g., figma.createFrame() "
        "not figma.createAutoLayout().",
    ),
    (
        _contains("layoutSizingHorizontal", "layoutSizingVertical"),
        "layoutSizingHorizontal/Vertical must be set AFTER the node is appended "
        "to a parent with layoutMode.",
    ),
    (
        _contains("Cannot assign to read only property"),
        "Some Figma properties are read-only. Check the Figma Plugin API docs "
        "for the correct setter.",
    ),
    (
        lambda text: "SemiBold" in text and "Semi Bold" not in text,
        'For Inter font, use "Semi Bold" (with a space), not "SemiBold".',
    ),
    (
        _contains("font"),
        "Make sure you loaded the font first: "
        'await figma.loadFontAsync({ family: "Inter", style: "Regular" })',
    ),
    (
        _contains("timeout", "Timeout"),
        "The code took too long (>30s). Break it into smaller chunks or "
        "simplify the operation.",
    ),
]


def find_hint(message: str) -> str | None:
    """Return the remediation hint for an error message, if one applies."""
    for matches, hint in ERROR_HINTS:
        if matches(message):
            return hint
    return None


@dataclass
class ExecutionResult:
    """Outcome of one remote evaluation."""

    success: bool
    message: str
    value: Any = None
    hint: str | None = None

    @property
    def text(self) -> str:
        if self.success:
            return self.message
        text = f"Error: {self.message}"
        if self.hint:
            text += f"\n\nHint: {self.hint}"
        return text


def format_value(value: Any) -> str:
    """Render a by-value result the way JavaScript's String() would."""
    if isinstance(value, (dict, list)):
        return json.dumps(value, indent=2)
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def describe_exception(details: dict[str, Any]) -> str:
    """Best available description of a remote exception."""
    exception = details.get("exception") or {}
    for candidate in (
        exception.get("description"),
        exception.get("value"),
        details.get("text"),
    ):
        if candidate:
            return str(candidate)
    return "Unknown error"


def classify_failure(message: str) -> ExecutionResult:
    return ExecutionResult(success=False, message=message, hint=find_hint(message))


def classify_evaluation(response: dict[str, Any]) -> ExecutionResult:
    """Turn a ``Runtime.evaluate`` result into an :class:`ExecutionResult`."""
    details = response.get("exceptionDetails")
    if details:
        return classify_failure(describe_exception(details))

    result = response.get("result") or {}
    if result.get("type") == "undefined":
        return ExecutionResult(success=True, message=NO_VALUE_MESSAGE)

    value = result.get("value")
    return ExecutionResult(success=True, message=format_value(value), value=value)


def wrap_code(code: str) -> str:
    """Wrap a snippet in an async IIFE so top-level ``await`` is legal."""
    if code.strip().startswith("(async"):
        return code
    return f"(async () => {{\n{code}\n}})()"


class CodeExecutor:
    """Runs snippets and protocol calls against the active tab."""

    def __init__(
        self, sessions: SessionManager, timeout: float = EXECUTION_TIMEOUT
    ) -> None:
        self.sessions = sessions
        self.timeout = timeout

    async def execute(self, code: str) -> ExecutionResult:
        """Evaluate a snippet in the active tab and classify the outcome."""
        try:
            conn = await self.sessions.ensure_active()
            response = await conn.evaluate(
                wrap_code(code),
                await_promise=True,
                return_by_value=True,
                timeout=self.timeout,
            )
        except BridgeError as e:
            logger.warning(f"Remote execution failed: {e}")
            return classify_failure(str(e))
        return classify_evaluation(response)

    async def evaluate_json(self, expression: str) -> Any:
        """Evaluate an expression that returns a JSON string and decode it.

        Errors propagate to the caller.
        """
        conn = await self.sessions.ensure_active()
        response = await conn.evaluate(
            expression, await_promise=True, return_by_value=True, timeout=self.timeout
        )
        outcome = classify_evaluation(response)
        if not outcome.success:
            raise BridgeError(outcome.text)
        if not isinstance(outcome.value, str):
            return outcome.value
        return json.loads(outcome.value)

    async def call(
        self, method: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """Send a raw protocol command to the active tab. Errors propagate."""
        conn = await self.sessions.ensure_active()
        return await conn.send(method, params, timeout=self.timeout)
