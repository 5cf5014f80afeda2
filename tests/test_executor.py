"""Tests for remote execution: wrapping, outcome classification, hints."""

from __future__ import annotations

from typing import Any

import pytest

import tellfigma_mcp.connection as connection_module
from fakes import FakeConnector, FakeDiscovery, FakeWebSocket, make_tab
from tellfigma_mcp.connection import CDPConnection
from tellfigma_mcp.discovery import TabDescriptor
from tellfigma_mcp.errors import BridgeError
from tellfigma_mcp.executor import (
    NO_VALUE_MESSAGE,
    CodeExecutor,
    ExecutionResult,
    classify_evaluation,
    describe_exception,
    find_hint,
    format_value,
    wrap_code,
)
from tellfigma_mcp.sessions import SessionManager


def _value(value: Any, type: str = "object") -> dict[str, Any]:
    return {"result": {"type": type, "value": value}}


def _exception(**details: Any) -> dict[str, Any]:
    return {"result": {"type": "object"}, "exceptionDetails": details}


def _executor(
    tabs: list[TabDescriptor] | None = None, handler: Any = None, **kwargs: Any
) -> tuple[CodeExecutor, FakeConnector]:
    connector = FakeConnector(evaluate_handler=handler)
    sessions = SessionManager(
        FakeDiscovery([make_tab("1", "Design")] if tabs is None else tabs),
        connector=connector,
        attempts=1,
        retry_delay=0,
    )
    return CodeExecutor(sessions, **kwargs), connector


# =============================================================================
# Wrapping
# =============================================================================


class TestWrapCode:
    def test_wraps_plain_code(self) -> None:
        wrapped = wrap_code("return 1;")
        assert wrapped.startswith("(async () => {")
        assert "return 1;" in wrapped
        assert wrapped.endswith("})()")

    def test_leaves_async_iife_alone(self) -> None:
        code = "(async () => { return 2; })()"
        assert wrap_code(code) == code

    def test_leading_whitespace_before_iife(self) -> None:
        code = "\n  (async () => { return 2; })()"
        assert wrap_code(code) == code


# =============================================================================
# Classification
# =============================================================================


class TestClassifyEvaluation:
    def test_object_value_is_pretty_json(self) -> None:
        outcome = classify_evaluation(_value({"a": 1}))
        assert outcome.success
        assert '"a": 1' in outcome.message
        assert outcome.value == {"a": 1}

    def test_undefined(self) -> None:
        outcome = classify_evaluation({"result": {"type": "undefined"}})
        assert outcome.success
        assert outcome.message == NO_VALUE_MESSAGE
        assert outcome.value is None

    def test_null_value(self) -> None:
        outcome = classify_evaluation({"result": {"type": "object", "subtype": "null", "value": None}})
        assert outcome.success
        assert outcome.message == "null"

    @pytest.mark.parametrize(
        "value,text",
        [
            (42, "42"),
            ("Created frame", "Created frame"),
            (True, "true"),
            (False, "false"),
            ([1, 2], "[\n  1,\n  2\n]"),
        ],
    )
    def test_format_value(self, value: Any, text: str) -> None:
        assert format_value(value) == text

    def test_exception_becomes_failure_with_hint(self) -> None:
        outcome = classify_evaluation(
            _exception(exception={"description": "ReferenceError: figma is not defined"})
        )
        assert not outcome.success
        assert outcome.message == "ReferenceError: figma is not defined"
        assert outcome.hint is not None and "Plugin API" in outcome.hint
        assert outcome.text.startswith("Error: ReferenceError")
        assert "\n\nHint: " in outcome.text

    def test_failure_without_hint_has_plain_text(self) -> None:
        outcome = classify_evaluation(_exception(text="Uncaught"))
        assert outcome.text == "Error: Uncaught"


class TestDescribeException:
    def test_prefers_description(self) -> None:
        details = {"exception": {"description": "Error: boom", "value": "x"}, "text": "Uncaught"}
        assert describe_exception(details) == "Error: boom"

    def test_falls_back_to_value(self) -> None:
        details = {"exception": {"value": "thrown string"}, "text": "Uncaught"}
        assert describe_exception(details) == "thrown string"

    def test_falls_back_to_text(self) -> None:
        assert describe_exception({"text": "Uncaught"}) == "Uncaught"

    def test_unknown(self) -> None:
        assert describe_exception({}) == "Unknown error"


# =============================================================================
# Hints
# =============================================================================


class TestFindHint:
    def test_load_font_hint_wins_over_generic_font(self) -> None:
        hint = find_hint("Error: in set_characters: Cannot write to node with unloaded font. Please call figma.loadFontAsync")
        assert hint is not None
        assert "loadFontAsync" in hint
        assert "before" in hint

    def test_figma_not_defined(self) -> None:
        hint = find_hint("ReferenceError: figma is not defined")
        assert hint is not None and "Plugin API" in hint

    def test_semibold_style_name(self) -> None:
        hint = find_hint('The font "Inter SemiBold" could not be loaded')
        assert hint is not None and '"Semi Bold"' in hint

    def test_semibold_already_spaced_falls_through_to_font(self) -> None:
        hint = find_hint('The font "Inter Semi Bold" and SemiBold could not be loaded')
        assert hint is not None and "loaded the font first" in hint

    def test_layout_sizing(self) -> None:
        hint = find_hint("Error: layoutSizingHorizontal can only be set on children of auto-layout frames")
        assert hint is not None and "AFTER" in hint

    def test_timeout(self) -> None:
        hint = find_hint("Runtime.evaluate timeout: no reply after 30s")
        assert hint is not None and "too long" in hint

    def test_no_hint(self) -> None:
        assert find_hint("SyntaxError: Unexpected token '}'") is None


# =============================================================================
# Executor
# =============================================================================


class TestCodeExecutor:
    @pytest.mark.asyncio
    async def test_execute_passes_evaluation_options(self) -> None:
        executor, connector = _executor(handler=lambda expr: _value("done", "string"))

        outcome = await executor.execute("return 'done';")

        assert outcome == ExecutionResult(success=True, message="done", value="done")
        ((expression, options),) = connector.connections[0].evaluations
        assert expression == wrap_code("return 'done';")
        assert options == {"await_promise": True, "return_by_value": True, "timeout": 30.0}

    @pytest.mark.asyncio
    async def test_no_tab_is_a_failed_result(self) -> None:
        executor, _ = _executor(tabs=[])

        outcome = await executor.execute("return 1;")

        assert not outcome.success
        assert "No Figma tab found" in outcome.message

    @pytest.mark.asyncio
    async def test_evaluate_json_decodes_string(self) -> None:
        executor, _ = _executor(handler=lambda expr: _value('{"width": 800}', "string"))
        assert await executor.evaluate_json("JSON.stringify(x)") == {"width": 800}

    @pytest.mark.asyncio
    async def test_evaluate_json_raises_on_exception(self) -> None:
        executor, _ = _executor(
            handler=lambda expr: _exception(exception={"description": "TypeError: x"})
        )
        with pytest.raises(BridgeError, match="TypeError: x"):
            await executor.evaluate_json("x")

    @pytest.mark.asyncio
    async def test_call_forwards_to_active_tab(self) -> None:
        executor, connector = _executor()
        await executor.call("Page.reload", {"ignoreCache": True})
        assert connector.connections[0].sent == [("Page.reload", {"ignoreCache": True})]

    @pytest.mark.asyncio
    async def test_silent_tab_times_out_with_hint(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(connection_module, "TIMEOUT_GRACE", 0)
        sockets: list[FakeWebSocket] = []

        async def connector(tab: TabDescriptor, on_close: Any) -> CDPConnection:
            ws = FakeWebSocket()
            sockets.append(ws)
            conn = CDPConnection(tab, ws, on_close)
            conn.start()
            return conn

        sessions = SessionManager(
            FakeDiscovery([make_tab("1")]), connector=connector, attempts=1, retry_delay=0
        )
        executor = CodeExecutor(sessions, timeout=0.05)

        outcome = await executor.execute("while (true) {}")
        await sessions.close()

        assert not outcome.success
        assert "timeout" in outcome.message
        assert outcome.hint is not None and "too long" in outcome.hint
        assert sockets[0].sent[0]["params"]["timeout"] == 50

    @pytest.mark.asyncio
    async def test_chrome_terminated_script_is_timeout_with_hint(self) -> None:
        def terminate(message: dict[str, Any]) -> dict[str, Any]:
            return {"error": {"code": -32000, "message": "Execution was terminated"}}

        async def connector(tab: TabDescriptor, on_close: Any) -> CDPConnection:
            conn = CDPConnection(tab, FakeWebSocket(terminate), on_close)
            conn.start()
            return conn

        sessions = SessionManager(
            FakeDiscovery([make_tab("1")]), connector=connector, attempts=1, retry_delay=0
        )
        executor = CodeExecutor(sessions)

        outcome = await executor.execute("while (true) {}")
        await sessions.close()

        assert not outcome.success
        assert outcome.message == "Runtime.evaluate timeout: execution exceeded 30s"
        assert outcome.hint is not None and "too long" in outcome.hint
