"""MCP Server for tellfigma - lets AI agents create and edit Figma designs.

This server provides tools for:
- Listing and switching between open Figma tabs in Chrome
- Executing Figma Plugin API code in the active tab
- Screenshots, page context, selection inspection, exports
- Reading and posting file comments through the Figma REST API
"""

from __future__ import annotations

import argparse
import asyncio
import base64
import io
import json
import logging
import os
import sys
from dataclasses import dataclass
from typing import Any

from mcp import types
from mcp.server import Server
from mcp.server.stdio import stdio_server

from . import snippets
from .chrome import ensure_chrome
from .client import FigmaCommentsClient, format_comment_threads
from .discovery import DEFAULT_HOST, DEFAULT_PORT, TabDiscovery, extract_file_key
from .errors import BridgeError, CDPError, ChromeLaunchError
from .executor import CodeExecutor
from .sessions import SessionManager, TabStatus

# Configure logging (stderr; stdout carries the MCP stream)
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

NAVIGATION_SETTLE = 2.0
SNAPSHOT_NODE_LIMIT = 200

# MCP Server instance
server = Server("tellfigma-mcp")


@dataclass
class BridgeContext:
    """Everything a tool handler needs, created once per process."""

    sessions: SessionManager
    executor: CodeExecutor
    comments: FigmaCommentsClient

    @classmethod
    def create(cls, host: str = DEFAULT_HOST, port: int = DEFAULT_PORT) -> BridgeContext:
        sessions = SessionManager(TabDiscovery(host=host, port=port))
        return cls(
            sessions=sessions,
            executor=CodeExecutor(sessions),
            comments=FigmaCommentsClient(),
        )

    async def close(self) -> None:
        await self.sessions.close()
        await self.comments.close()


context: BridgeContext | None = None


def get_context() -> BridgeContext:
    """Get or create the process-wide bridge context."""
    global context
    if context is None:
        context = BridgeContext.create(
            host=os.environ.get("TELLFIGMA_CHROME_HOST", DEFAULT_HOST),
            port=int(os.environ.get("TELLFIGMA_CHROME_PORT", DEFAULT_PORT)),
        )
    return context


# =============================================================================
# Formatting
# =============================================================================


ToolResult = list[types.TextContent | types.ImageContent | types.EmbeddedResource]


def _text(text: str) -> ToolResult:
    return [types.TextContent(type="text", text=text)]


def format_tab_listing(statuses: list[TabStatus]) -> str:
    """Numbered tab list, marking connected and active tabs."""
    if not statuses:
        return "No Figma tabs found. Open a Figma design file in Chrome."
    lines = [f"Found {len(statuses)} Figma tab(s):", ""]
    for i, status in enumerate(statuses, start=1):
        state = "connected" if status.connected else "not connected"
        marker = " <- ACTIVE" if status.active else ""
        lines.append(f'  {i}. [{state}] "{status.tab.title}"{marker}')
        lines.append(f"     {status.tab.url}")
        lines.append(f"     ID: {status.tab.id}")
    lines.append("")
    lines.append("Use switch_figma_tab with a tab number, name, or URL to switch.")
    return "\n".join(lines)


def simplify_ax_nodes(nodes: list[dict[str, Any]], limit: int = SNAPSHOT_NODE_LIMIT) -> list[dict[str, Any]]:
    """Reduce accessibility nodes to role/name/description."""
    simplified = []
    for node in nodes[:limit]:
        entry = {
            "role": (node.get("role") or {}).get("value"),
            "name": (node.get("name") or {}).get("value"),
            "description": (node.get("description") or {}).get("value"),
        }
        if entry["role"] or entry["name"]:
            simplified.append(entry)
    return simplified


def _device_scale(screenshot_b64: str, css_width: int) -> float | None:
    """Ratio of screenshot pixels to CSS pixels (e.g. 2 on a Retina display)."""
    try:
        from PIL import Image
    except ImportError:
        logger.warning("Pillow not installed. Skipping device scale detection.")
        return None

    try:
        img = Image.open(io.BytesIO(base64.b64decode(screenshot_b64)))
    except (OSError, ValueError) as e:
        logger.warning(f"Could not decode screenshot: {e}")
        return None
    return img.width / css_width if css_width else None


# -----------------------------------------------------------------------------
# Tool Definitions
# -----------------------------------------------------------------------------

_NO_ARGS: dict[str, Any] = {"type": "object", "properties": {}, "required": []}

TOOLS = [
    types.Tool(
        name="list_figma_tabs",
        description="""List all open Figma tabs in Chrome.

Shows which tab is currently active (the one all tools operate on) and
which tabs already have a live connection. Use switch_figma_tab to change
the active tab.""",
        inputSchema=_NO_ARGS,
    ),
    types.Tool(
        name="switch_figma_tab",
        description="""Switch which Figma tab the tools operate on.

Accepts a Chrome tab ID, a title substring, a URL substring, or a tab
number (1-based, as shown by list_figma_tabs), tried in that order.""",
        inputSchema={
            "type": "object",
            "properties": {
                "identifier": {
                    "type": "string",
                    "description": "Tab ID, title substring, URL substring, or 1-based tab number",
                },
            },
            "required": ["identifier"],
        },
    ),
    types.Tool(
        name="connection_status",
        description=(
            "Check the Chrome connection and Figma Plugin API availability. "
            "Run this first if unsure whether the bridge is working."
        ),
        inputSchema=_NO_ARGS,
    ),
    types.Tool(
        name="execute_figma_code",
        description="""Execute JavaScript in the active Figma tab to create, edit, or delete nodes.

The `figma` global gives full access to the Figma Plugin API:
- figma.createFrame(), figma.createText(), figma.createRectangle(), figma.createComponent()
- figma.currentPage.selection, figma.currentPage.findAll(), figma.currentPage.findOne()
- figma.viewport.scrollAndZoomIntoView([node])
- figma.loadFontAsync({ family, style }) - MUST be awaited before setting text
- child.layoutSizingHorizontal = 'FILL' - MUST be set AFTER appendChild()

Code runs inside an async function, so `await` works and `return` sends a
value back. RGB values are 0-1, not 0-255. Inter's semibold style is
"Semi Bold" (with a space).""",
        inputSchema={
            "type": "object",
            "properties": {
                "code": {
                    "type": "string",
                    "description": "JavaScript to run in the Figma tab. The `figma` global is available.",
                },
            },
            "required": ["code"],
        },
    ),
    types.Tool(
        name="take_screenshot",
        description="Capture a live screenshot of the Figma canvas. Use after visual changes to verify the result.",
        inputSchema=_NO_ARGS,
    ),
    types.Tool(
        name="get_page_context",
        description="Get the current page name, selection, top-level nodes, and Plugin API availability.",
        inputSchema=_NO_ARGS,
    ),
    types.Tool(
        name="navigate",
        description="Navigate the active tab to a URL, e.g. to open a specific Figma file.",
        inputSchema={
            "type": "object",
            "properties": {
                "url": {"type": "string", "description": "The URL to navigate to"},
            },
            "required": ["url"],
        },
    ),
    types.Tool(
        name="click",
        description="Click at a viewport position. Prefer execute_figma_code for most operations.",
        inputSchema={
            "type": "object",
            "properties": {
                "x": {"type": "number", "description": "X coordinate (CSS pixels)"},
                "y": {"type": "number", "description": "Y coordinate (CSS pixels)"},
            },
            "required": ["x", "y"],
        },
    ),
    types.Tool(
        name="get_snapshot",
        description="Get the accessibility tree of the page (role, name, description of up to 200 nodes).",
        inputSchema=_NO_ARGS,
    ),
    types.Tool(
        name="undo",
        description="Undo the last action(s) in Figma.",
        inputSchema={
            "type": "object",
            "properties": {
                "steps": {
                    "type": "integer",
                    "description": "Number of undo steps (max 50)",
                    "default": 1,
                },
            },
            "required": [],
        },
    ),
    types.Tool(
        name="redo",
        description="Redo the last undone action(s) in Figma.",
        inputSchema={
            "type": "object",
            "properties": {
                "steps": {
                    "type": "integer",
                    "description": "Number of redo steps (max 50)",
                    "default": 1,
                },
            },
            "required": [],
        },
    ),
    types.Tool(
        name="select_nodes",
        description="Find nodes on the current page by name and/or type, and optionally select them.",
        inputSchema={
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": "Case-insensitive substring of the node name",
                },
                "type": {
                    "type": "string",
                    "description": "Node type: FRAME, TEXT, RECTANGLE, COMPONENT, INSTANCE, GROUP, ...",
                },
                "select": {
                    "type": "boolean",
                    "description": "Select and zoom to the matches",
                    "default": True,
                },
            },
            "required": [],
        },
    ),
    types.Tool(
        name="list_components",
        description="List components and component sets on the current page.",
        inputSchema={
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": "Optional case-insensitive name filter",
                },
            },
            "required": [],
        },
    ),
    types.Tool(
        name="export_node",
        description="Export a node as PNG, SVG, JPG or PDF. Exports the first selected node if node_id is omitted.",
        inputSchema={
            "type": "object",
            "properties": {
                "node_id": {"type": "string", "description": 'Node ID, e.g. "123:456"'},
                "format": {
                    "type": "string",
                    "enum": list(snippets.EXPORT_FORMATS),
                    "default": "PNG",
                },
                "scale": {
                    "type": "number",
                    "description": "Scale for raster formats",
                    "default": 2,
                },
            },
            "required": [],
        },
    ),
    types.Tool(
        name="read_selection",
        description="Deep inspect the selected nodes: fills, strokes, effects, fonts, layout, children.",
        inputSchema=_NO_ARGS,
    ),
    types.Tool(
        name="get_variables",
        description="List local variables (design tokens) grouped by collection, with values for the first mode.",
        inputSchema={
            "type": "object",
            "properties": {
                "collection_name": {
                    "type": "string",
                    "description": "Case-insensitive collection name filter",
                },
            },
            "required": [],
        },
    ),
    types.Tool(
        name="duplicate_node",
        description="Clone a node (or the first selected node) one or more times with an offset.",
        inputSchema={
            "type": "object",
            "properties": {
                "node_id": {"type": "string", "description": "Node ID to duplicate"},
                "offset_x": {"type": "number", "default": 20},
                "offset_y": {"type": "number", "default": 20},
                "count": {
                    "type": "integer",
                    "description": "Number of copies (max 50)",
                    "default": 1,
                },
            },
            "required": [],
        },
    ),
    types.Tool(
        name="get_styles",
        description="List local paint, text, effect and grid styles in the file.",
        inputSchema=_NO_ARGS,
    ),
    types.Tool(
        name="zoom_to",
        description="Zoom the viewport to the selection, the whole page, or a specific node.",
        inputSchema={
            "type": "object",
            "properties": {
                "target": {
                    "type": "string",
                    "enum": list(snippets.ZOOM_TARGETS),
                    "default": "selection",
                },
                "node_id": {
                    "type": "string",
                    "description": 'Node ID (when target is "nodeId")',
                },
            },
            "required": [],
        },
    ),
    types.Tool(
        name="get_comments",
        description="""Read comments on the active Figma file.

Requires the FIGMA_TOKEN environment variable (personal access token).""",
        inputSchema={
            "type": "object",
            "properties": {
                "node_id": {
                    "type": "string",
                    "description": "Only comments pinned to this node",
                },
                "include_resolved": {
                    "type": "boolean",
                    "description": "Include resolved comments",
                    "default": False,
                },
            },
            "required": [],
        },
    ),
    types.Tool(
        name="post_comment",
        description="""Post a comment on the active Figma file, pinned to a node or as a reply.

Requires the FIGMA_TOKEN environment variable.""",
        inputSchema={
            "type": "object",
            "properties": {
                "message": {"type": "string", "description": "Comment text"},
                "node_id": {"type": "string", "description": "Node to pin the comment to"},
                "reply_to": {"type": "string", "description": "Comment ID to reply to"},
            },
            "required": ["message"],
        },
    ),
]


REQUIRED_ARGUMENTS = {tool.name: tool.inputSchema.get("required", []) for tool in TOOLS}


@server.list_tools()  # type: ignore
async def list_tools() -> list[types.Tool]:
    """List available tellfigma tools."""
    return TOOLS


@server.call_tool()  # type: ignore
async def call_tool(
    name: str, arguments: dict[str, Any]
) -> ToolResult:
    """Handle tool calls."""
    return await dispatch(name, arguments or {}, get_context())


async def _active_file_key(ctx: BridgeContext) -> str:
    ctx.comments.require_token()
    await ctx.sessions.ensure_active()
    active = ctx.sessions.get_active_info()
    key = extract_file_key(active.url) if active else None
    if not key:
        url = active.url if active else "unknown"
        raise BridgeError(f"The active tab is not a Figma file ({url}).")
    return key


async def dispatch(
    name: str, arguments: dict[str, Any], ctx: BridgeContext
) -> ToolResult:
    """Run one tool against ``ctx``. Failures come back as text."""
    executor = ctx.executor

    missing = [arg for arg in REQUIRED_ARGUMENTS.get(name, ()) if arguments.get(arg) is None]
    if missing:
        return _text(f"Error: Missing argument '{missing[0]}' for {name}")

    try:
        # Tab management
        if name == "list_figma_tabs":
            return _text(format_tab_listing(await ctx.sessions.list_tabs()))

        elif name == "switch_figma_tab":
            tab = await ctx.sessions.switch_to(str(arguments["identifier"]))
            return _text(
                f'Switched to: "{tab.title}"\n{tab.url}\n\nAll tools now operate on this tab.'
            )

        elif name == "connection_status":
            try:
                await ctx.sessions.ensure_active()
                status = await executor.evaluate_json(snippets.STATUS_EXPRESSION)
            except BridgeError as e:
                return _text(
                    f"Not connected: {e}\n\nMake sure Chrome is running with "
                    f"--remote-debugging-port={ctx.sessions.discovery.port} "
                    "and a Figma design file is open."
                )
            tabs = await ctx.sessions.list_tabs()
            lines = [
                "Connected to Chrome via CDP",
                f"Active tab: {status.get('title')}",
            ]
            if status.get("figmaAvailable"):
                lines.append("Figma Plugin API available")
            else:
                lines.append(
                    "Figma Plugin API NOT available - open any Figma plugin "
                    "(e.g. Iconify), close it, and try again"
                )
            lines.append(
                "Can create and edit nodes"
                if status.get("canCreate")
                else "Cannot create nodes"
            )
            if status.get("pageName"):
                lines.append(f"Current page: {status['pageName']}")
            if len(tabs) > 1:
                lines.append("")
                lines.append(
                    f"{len(tabs)} Figma tabs open - use list_figma_tabs and "
                    "switch_figma_tab to work on another file"
                )
            return _text("\n".join(lines))

        # Code execution
        elif name == "execute_figma_code":
            result = await executor.execute(arguments["code"])
            return _text(result.text)

        elif name == "take_screenshot":
            shot = await executor.call("Page.captureScreenshot", {"format": "png"})
            data = shot.get("data")
            if not data:
                raise CDPError("Page.captureScreenshot returned no image data")
            viewport = await executor.evaluate_json(snippets.VIEWPORT_EXPRESSION)
            width, height = viewport.get("width", 0), viewport.get("height", 0)
            caption = f"Screenshot captured ({width}x{height}px)"
            scale = _device_scale(data, width)
            if scale and abs(scale - 1) > 0.01:
                caption += f", {scale:g}x device pixel ratio"
            return [
                types.ImageContent(type="image", data=data, mimeType="image/png"),
                types.TextContent(type="text", text=caption),
            ]

        elif name == "get_page_context":
            info = await executor.evaluate_json(snippets.PAGE_CONTEXT_EXPRESSION)
            return _text(json.dumps(info, indent=2))

        # Browser interaction
        elif name == "navigate":
            url = str(arguments["url"])
            if not url.startswith(("http://", "https://")):
                return _text(f"Error: Not an http(s) URL: {url}")
            response = await executor.call("Page.navigate", {"url": url})
            if response.get("errorText"):
                return _text(f"Error: Navigation failed: {response['errorText']}")
            await asyncio.sleep(NAVIGATION_SETTLE)
            # Redirects land elsewhere; keep the tab's URL current for file-key lookups.
            href = await executor.evaluate_json(snippets.LOCATION_EXPRESSION)
            if isinstance(href, str) and href:
                ctx.sessions.update_active_url(href)
            return _text(f"Navigated to {url}")

        elif name == "click":
            x, y = float(arguments["x"]), float(arguments["y"])
            for event in ("mousePressed", "mouseReleased"):
                await executor.call(
                    "Input.dispatchMouseEvent",
                    {"type": event, "x": x, "y": y, "button": "left", "clickCount": 1},
                )
            return _text(f"Clicked at ({x:g}, {y:g})")

        elif name == "get_snapshot":
            tree = await executor.call("Accessibility.getFullAXTree")
            nodes = simplify_ax_nodes(tree.get("nodes", []))
            return _text(json.dumps(nodes, indent=2))

        # Canvas operations
        elif name in ("undo", "redo"):
            code = snippets.history_snippet(name, arguments.get("steps", 1))
            return _text((await executor.execute(code)).text)

        elif name == "select_nodes":
            code = snippets.select_nodes_snippet(
                query=arguments.get("query"),
                node_type=arguments.get("type"),
                select=arguments.get("select", True),
            )
            return _text((await executor.execute(code)).text)

        elif name == "list_components":
            code = snippets.list_components_snippet(arguments.get("query"))
            return _text((await executor.execute(code)).text)

        elif name == "export_node":
            fmt = str(arguments.get("format", "PNG")).upper()
            code = snippets.export_node_snippet(
                node_id=arguments.get("node_id"),
                fmt=fmt,
                scale=arguments.get("scale", 2),
            )
            result = await executor.execute(code)
            exported = result.value if result.success else None
            if not isinstance(exported, dict) or not exported.get("base64"):
                return _text(result.text)

            mime_type = snippets.EXPORT_MIME_TYPES[fmt]
            caption = types.TextContent(
                type="text",
                text=f'Exported "{exported.get("name")}" as {fmt} ({exported.get("byteLength")} bytes)',
            )
            if fmt == "PDF":
                resource = types.EmbeddedResource(
                    type="resource",
                    resource=types.BlobResourceContents(
                        uri="tellfigma://export/node.pdf",
                        mimeType=mime_type,
                        blob=exported["base64"],
                    ),
                )
                return [resource, caption]
            return [
                types.ImageContent(type="image", data=exported["base64"], mimeType=mime_type),
                caption,
            ]

        elif name == "read_selection":
            return _text((await executor.execute(snippets.READ_SELECTION_SNIPPET)).text)

        elif name == "get_variables":
            code = snippets.get_variables_snippet(arguments.get("collection_name"))
            return _text((await executor.execute(code)).text)

        elif name == "duplicate_node":
            code = snippets.duplicate_node_snippet(
                node_id=arguments.get("node_id"),
                offset_x=arguments.get("offset_x", 20),
                offset_y=arguments.get("offset_y", 20),
                count=arguments.get("count", 1),
            )
            return _text((await executor.execute(code)).text)

        elif name == "get_styles":
            return _text((await executor.execute(snippets.GET_STYLES_SNIPPET)).text)

        elif name == "zoom_to":
            code = snippets.zoom_to_snippet(
                target=arguments.get("target", "selection"),
                node_id=arguments.get("node_id"),
            )
            return _text((await executor.execute(code)).text)

        # Comments (REST)
        elif name == "get_comments":
            node_id = arguments.get("node_id")
            include_resolved = arguments.get("include_resolved", False)
            file_key = await _active_file_key(ctx)
            response = await ctx.comments.get_comments(file_key, node_id=node_id)
            if not response.success:
                return _text(f"Error: {response.error}")

            comments = response.data or []
            if not include_resolved:
                comments = [c for c in comments if not c["resolved"]]
            if not comments:
                scope = f" on node {node_id}" if node_id else ""
                resolved = "" if include_resolved else " unresolved"
                return _text(f"No{resolved} comments found{scope}.")
            return _text(
                f"{len(comments)} comment(s) found:\n\n{format_comment_threads(comments)}"
            )

        elif name == "post_comment":
            file_key = await _active_file_key(ctx)
            response = await ctx.comments.post_comment(
                file_key,
                arguments["message"],
                node_id=arguments.get("node_id"),
                reply_to=arguments.get("reply_to"),
            )
            if not response.success:
                return _text(f"Error: {response.error}")
            posted = response.data or {}
            return _text(
                f'Comment posted (ID: {posted.get("id")}): "{posted.get("message")}"'
            )

        else:
            return _text(f"Unknown tool: {name}")

    except BridgeError as e:
        return _text(f"Error: {e}")
    except ValueError as e:
        return _text(f"Error: {e}")
    except Exception as e:
        logger.exception(f"Error calling tool {name}")
        return _text(f"Error: {str(e)}")


async def main(
    host: str = DEFAULT_HOST, port: int = DEFAULT_PORT, launch: bool = True
) -> None:
    """Run the MCP server."""
    global context
    context = BridgeContext.create(host=host, port=port)
    logger.info("Starting tellfigma MCP server")

    try:
        await ensure_chrome(context.sessions.discovery, launch=launch)
        async with stdio_server() as (read_stream, write_stream):
            await server.run(
                read_stream,
                write_stream,
                server.create_initialization_options(),
            )
    finally:
        await context.close()


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="tellfigma-mcp",
        description="MCP server that controls Figma in Chrome over the DevTools Protocol.",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.environ.get("TELLFIGMA_CHROME_PORT", DEFAULT_PORT)),
        help=f"Chrome remote debugging port (default: {DEFAULT_PORT})",
    )
    parser.add_argument(
        "--host",
        default=os.environ.get("TELLFIGMA_CHROME_HOST", DEFAULT_HOST),
        help=f"Chrome remote debugging host (default: {DEFAULT_HOST})",
    )
    parser.add_argument(
        "--no-launch",
        action="store_true",
        help="Only attach to an already running Chrome",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def run() -> None:
    """Entry point for the MCP server."""
    args = parse_args()
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    try:
        asyncio.run(main(host=args.host, port=args.port, launch=not args.no_launch))
    except ChromeLaunchError as e:
        logger.error(str(e))
        sys.exit(1)


if __name__ == "__main__":
    run()
