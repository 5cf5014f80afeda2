"""HTTP client for the Figma REST comments API."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any

import httpx

from .errors import MissingCredentialError

logger = logging.getLogger(__name__)

FIGMA_API_URL = "https://api.figma.com/v1"
DEFAULT_TIMEOUT = 30.0

MISSING_TOKEN_MESSAGE = (
    "FIGMA_TOKEN is not set. Create a personal access token in Figma "
    "(Settings > Security > Personal access tokens) and export it as FIGMA_TOKEN."
)


@dataclass
class FigmaResponse:
    """Response from the Figma REST API."""

    success: bool
    data: Any = None
    error: str | None = None


def normalize_comment(raw: dict[str, Any]) -> dict[str, Any]:
    """Flatten a REST comment into the fields the tools display."""
    client_meta = raw.get("client_meta") or {}
    user = raw.get("user") or {}
    return {
        "id": str(raw.get("id", "")),
        "author": user.get("handle") or "unknown",
        "message": raw.get("message", ""),
        "created_at": raw.get("created_at", ""),
        "resolved": bool(raw.get("resolved_at")),
        "parent_id": raw.get("parent_id") or None,
        "node_id": client_meta.get("node_id") if isinstance(client_meta, dict) else None,
    }


class FigmaCommentsClient:
    """Reads and posts comments on a Figma file.

    Requires a personal access token, taken from ``FIGMA_TOKEN`` when not
    passed explicitly.
    """

    def __init__(
        self,
        token: str | None = None,
        base_url: str = FIGMA_API_URL,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.token = token or os.environ.get("FIGMA_TOKEN")
        self.base_url = base_url
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=DEFAULT_TIMEOUT, transport=self._transport
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def require_token(self) -> str:
        if not self.token:
            raise MissingCredentialError(MISSING_TOKEN_MESSAGE)
        return self.token

    async def _request(
        self,
        method: str,
        endpoint: str,
        json_data: dict[str, Any] | None = None,
    ) -> FigmaResponse:
        """Make an authenticated request to the Figma API.

        Args:
            method: HTTP method (GET or POST).
            endpoint: API endpoint path.
            json_data: Optional JSON body for POST requests.
        """
        token = self.require_token()
        client = await self._get_client()
        url = f"{self.base_url}{endpoint}"
        headers = {"X-Figma-Token": token}

        try:
            if method == "GET":
                response = await client.get(url, headers=headers)
            elif method == "POST":
                response = await client.post(url, json=json_data, headers=headers)
            else:
                return FigmaResponse(success=False, error=f"Unsupported method: {method}")

            response.raise_for_status()
            return FigmaResponse(success=True, data=response.json())
        except httpx.ConnectError as e:
            return FigmaResponse(
                success=False, error=f"Cannot connect to the Figma API at {url}: {e}"
            )
        except httpx.HTTPStatusError as e:
            return FigmaResponse(
                success=False,
                error=f"Figma API error: {e.response.status_code} - {e.response.text}",
            )
        except httpx.TimeoutException:
            return FigmaResponse(
                success=False, error=f"Figma API request timed out after {DEFAULT_TIMEOUT}s"
            )
        except (httpx.HTTPError, ValueError) as e:
            return FigmaResponse(success=False, error=str(e))

    async def get_comments(
        self, file_key: str, node_id: str | None = None
    ) -> FigmaResponse:
        """Fetch comments on a file, optionally only those pinned to ``node_id``.

        On success ``data`` is a list of normalized comments.
        """
        response = await self._request("GET", f"/files/{file_key}/comments")
        if not response.success:
            return response
        raw = (response.data or {}).get("comments", [])
        comments = [normalize_comment(c) for c in raw if isinstance(c, dict)]
        if node_id:
            comments = [c for c in comments if c["node_id"] == node_id]
        return FigmaResponse(success=True, data=comments)

    async def post_comment(
        self,
        file_key: str,
        message: str,
        node_id: str | None = None,
        reply_to: str | None = None,
    ) -> FigmaResponse:
        """Post a comment, pinned to a node or as a reply to a thread."""
        body: dict[str, Any] = {"message": message}
        if reply_to:
            body["comment_id"] = reply_to
        elif node_id:
            body["client_meta"] = {"node_id": node_id, "node_offset": {"x": 0, "y": 0}}
        response = await self._request("POST", f"/files/{file_key}/comments", body)
        if response.success and isinstance(response.data, dict):
            logger.info(f"Posted comment {response.data.get('id')} on file {file_key}")
        return response


def format_comment_threads(comments: list[dict[str, Any]]) -> str:
    """Group replies under their parent comment for display."""
    top_level = [c for c in comments if not c["parent_id"]]
    replies: dict[str, list[dict[str, Any]]] = {}
    for c in comments:
        if c["parent_id"]:
            replies.setdefault(c["parent_id"], []).append(c)

    blocks = []
    for c in top_level:
        lines = [f'{c["author"]} ({c["created_at"]}):', f'   "{c["message"]}"']
        if c["node_id"]:
            lines.append(f'   Node: {c["node_id"]}')
        thread = replies.get(c["id"], [])
        if thread:
            lines.append("   Replies:")
            for r in thread:
                lines.append(f'     -> {r["author"]}: "{r["message"]}"')
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)
