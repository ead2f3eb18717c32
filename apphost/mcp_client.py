"""
MCP Client - talks to remote tool servers over HTTP JSON-RPC 2.0.

Implements the client side of the Model Context Protocol used by the host:
- initialize / notifications/initialized handshake
- Tool discovery (tools/list) and invocation (tools/call)
- Resource access (resources/list, resources/read)
- Mcp-Session-Id tracking per server URL
- Single-event SSE response bodies ("event: message" / "data: {...}")

Based on: https://modelcontextprotocol.io/docs/concepts/transports
"""

import json
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

from .config import ProtocolConfig
from .exceptions import MCPServerError
from .models import Capabilities, Resource, Tool, ToolResult, TextContent

logger = logging.getLogger(__name__)

SESSION_HEADER = "Mcp-Session-Id"


class ProtocolClient(ABC):
    """Contract the host needs from a tool-server client."""

    @abstractmethod
    async def initialize(self, server_url: str) -> Optional[Capabilities]:
        """Handshake with the server. None (or an exception) means failure."""
        pass

    @abstractmethod
    async def list_tools(self, server_url: str, cursor: Optional[str] = None) -> List[Tool]:
        pass

    @abstractmethod
    async def call_tool(
        self,
        server_url: str,
        tool_name: str,
        arguments: Dict[str, Any],
        meta: Optional[Dict[str, Any]] = None,
    ) -> ToolResult:
        pass

    @abstractmethod
    async def read_resource(self, server_url: str, uri: str, mode: str = "inline") -> Optional[Resource]:
        pass

    async def release(self, server_url: str) -> None:
        """Drop any per-server state after a disconnect."""
        return None


class McpHttpClient(ProtocolClient):
    """
    HTTP implementation of ProtocolClient.

    Usage:
        client = McpHttpClient(ProtocolConfig())
        caps = await client.initialize("https://weather.example.com/mcp")
        tools = await client.list_tools("https://weather.example.com/mcp")
        result = await client.call_tool(url, "get_forecast", {"city": "Paris"})
    """

    def __init__(
        self,
        config: Optional[ProtocolConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.config = config or ProtocolConfig()
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=self.config.request_timeout)
        self._headers = headers or {}
        self._session_ids: Dict[str, str] = {}

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _build_headers(self, server_url: str) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json, text/event-stream",
            **self._headers,
        }
        session_id = self._session_ids.get(server_url)
        if session_id:
            headers[SESSION_HEADER] = session_id
        return headers

    @staticmethod
    def _decode_body(body: str) -> Dict[str, Any]:
        """Decode a JSON or single-event SSE body."""
        text = body.strip()
        if text.startswith("event:") or text.startswith("data:"):
            data_lines = [
                line[len("data:"):].strip()
                for line in text.splitlines()
                if line.startswith("data:")
            ]
            text = "\n".join(data_lines)
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as e:
            raise MCPServerError(f"Invalid JSON-RPC response: {e}", {"body": body[:200]}) from e
        if not isinstance(payload, dict):
            raise MCPServerError("JSON-RPC response is not an object", {"body": body[:200]})
        return payload

    async def send_request(
        self,
        server_url: str,
        method: str,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Send a JSON-RPC request and return the decoded response envelope."""
        message: Dict[str, Any] = {
            "jsonrpc": "2.0",
            "id": str(uuid.uuid4()),
            "method": method,
        }
        if params:
            message["params"] = params

        try:
            response = await self._client.post(
                server_url,
                json=message,
                headers=self._build_headers(server_url),
                timeout=timeout or self.config.request_timeout,
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise MCPServerError(f"{method} request to {server_url} failed: {e}", {"method": method}) from e

        session_id = response.headers.get(SESSION_HEADER)
        if session_id:
            self._session_ids[server_url] = session_id

        return self._decode_body(response.text)

    async def send_notification(self, server_url: str, method: str, params: Optional[Dict[str, Any]] = None) -> None:
        message: Dict[str, Any] = {"jsonrpc": "2.0", "method": method}
        if params:
            message["params"] = params
        try:
            response = await self._client.post(
                server_url, json=message, headers=self._build_headers(server_url)
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise MCPServerError(f"{method} notification to {server_url} failed: {e}", {"method": method}) from e

    # ------------------------------------------------------------------
    # Protocol calls
    # ------------------------------------------------------------------

    async def initialize(self, server_url: str) -> Optional[Capabilities]:
        # A fresh handshake never reuses an old session id
        self._session_ids.pop(server_url, None)
        response = await self.send_request(server_url, "initialize", {
            "protocolVersion": self.config.protocol_version,
            "capabilities": {
                "tools": {},
                "resources": {}
            },
            "clientInfo": {
                "name": self.config.client_name,
                "version": self.config.client_version
            }
        }, timeout=self.config.init_timeout)

        if "error" in response:
            logger.error(f"MCP initialization error from {server_url}: {response['error']}")
            return None

        await self.send_notification(server_url, "notifications/initialized")

        capabilities = Capabilities.from_dict(response.get("result") or {})
        logger.info(f"✅ MCP session initialized with {server_url} ({capabilities.server_info.get('name', 'unknown')})")
        return capabilities

    async def list_tools(self, server_url: str, cursor: Optional[str] = None) -> List[Tool]:
        params = {"cursor": cursor} if cursor else None
        response = await self.send_request(
            server_url, "tools/list", params, timeout=self.config.list_tools_timeout
        )
        if "error" in response:
            error = response["error"] or {}
            raise MCPServerError(f"tools/list failed: {error.get('message', error)}", {"error": error})

        tools_data = (response.get("result") or {}).get("tools") or []
        tools = [Tool.from_dict(t) for t in tools_data if isinstance(t, dict) and t.get("name")]
        logger.info(f"📦 Discovered {len(tools)} tools from {server_url}: {[t.name for t in tools]}")
        return tools

    async def call_tool(
        self,
        server_url: str,
        tool_name: str,
        arguments: Dict[str, Any],
        meta: Optional[Dict[str, Any]] = None,
    ) -> ToolResult:
        params: Dict[str, Any] = {"name": tool_name, "arguments": arguments or {}}
        if meta:
            params["_meta"] = meta

        response = await self.send_request(server_url, "tools/call", params)

        if "error" in response:
            error = response["error"] or {}
            message = error.get("message", "Unknown error") if isinstance(error, dict) else str(error)
            logger.error(f"❌ MCP tool error ({tool_name}): {message}")
            return ToolResult(
                content=[TextContent(text=f"Error: {message}")],
                is_error=True,
                error_data=error.get("data") if isinstance(error, dict) else None,
            )

        return ToolResult.from_dict(response.get("result") or {})

    async def list_resources(self, server_url: str, cursor: Optional[str] = None) -> List[Resource]:
        params = {"cursor": cursor} if cursor else None
        response = await self.send_request(server_url, "resources/list", params)
        if "error" in response:
            raise MCPServerError(f"resources/list failed: {response['error']}", {"error": response["error"]})
        resources = (response.get("result") or {}).get("resources") or []
        return [
            Resource(uri=r.get("uri", ""), mime_type=r.get("mimeType"))
            for r in resources if isinstance(r, dict)
        ]

    async def read_resource(self, server_url: str, uri: str, mode: str = "inline") -> Optional[Resource]:
        params: Dict[str, Any] = {"uri": uri}
        if uri.startswith("ui://"):
            params["context"] = {"displayMode": mode, "platform": "mobile"}

        response = await self.send_request(server_url, "resources/read", params)
        if "error" in response:
            logger.error(f"Read resource error for {uri}: {response['error']}")
            return None

        contents = (response.get("result") or {}).get("contents") or []
        if not contents or not isinstance(contents[0], dict):
            return None
        first = contents[0]
        return Resource(
            uri=first.get("uri", uri),
            mime_type=first.get("mimeType"),
            text=first.get("text"),
            blob=first.get("blob"),
        )

    async def release(self, server_url: str) -> None:
        self._session_ids.pop(server_url, None)

    def session_id(self, server_url: str) -> Optional[str]:
        return self._session_ids.get(server_url)

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()
