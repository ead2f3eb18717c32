"""
Data model shared by the registry, controller, collection state machine
and router.

Tools are immutable once discovered. An App owns its tool list by value.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union


class ConnectionStatus(Enum):
    """Connection state of a remote app."""
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    ERROR = "error"


@dataclass(frozen=True)
class Tool:
    """A remotely invokable capability described by a JSON-Schema-like input schema."""
    name: str
    title: Optional[str] = None
    description: Optional[str] = None
    input_schema: Dict[str, Any] = field(default_factory=dict)
    output_schema: Optional[Dict[str, Any]] = None
    meta: Optional[Dict[str, Any]] = None

    @property
    def display_name(self) -> str:
        return self.title or self.name

    def properties(self) -> Dict[str, Any]:
        props = self.input_schema.get("properties") if isinstance(self.input_schema, dict) else None
        return props if isinstance(props, dict) else {}

    def required_parameters(self) -> List[str]:
        """Read ``inputSchema.required`` fresh on every call."""
        if not isinstance(self.input_schema, dict):
            return []
        required = self.input_schema.get("required")
        if not isinstance(required, list):
            return []
        return [str(name) for name in required]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Tool":
        return cls(
            name=data["name"],
            title=data.get("title"),
            description=data.get("description"),
            input_schema=data.get("inputSchema") or {},
            output_schema=data.get("outputSchema"),
            meta=data.get("_meta"),
        )


# ============================================================================
# TOOL RESULT CONTENT
# ============================================================================

@dataclass(frozen=True)
class TextContent:
    text: str
    type: str = "text"


@dataclass(frozen=True)
class ImageContent:
    data: str
    mime_type: str = "image/png"
    type: str = "image"


@dataclass(frozen=True)
class AudioContent:
    data: str
    mime_type: str = "audio/wav"
    type: str = "audio"


@dataclass(frozen=True)
class ResourceLinkContent:
    uri: str
    name: Optional[str] = None
    description: Optional[str] = None
    mime_type: Optional[str] = None
    type: str = "resource_link"


ContentItem = Union[TextContent, ImageContent, AudioContent, ResourceLinkContent]


def parse_content_item(data: Dict[str, Any]) -> Optional[ContentItem]:
    """Parse one ``content`` entry; unknown types return None."""
    kind = data.get("type")
    if kind == "text":
        return TextContent(text=data.get("text", ""))
    if kind == "image":
        return ImageContent(data=data.get("data", ""), mime_type=data.get("mimeType", "image/png"))
    if kind == "audio":
        return AudioContent(data=data.get("data", ""), mime_type=data.get("mimeType", "audio/wav"))
    if kind == "resource_link":
        return ResourceLinkContent(
            uri=data.get("uri", ""),
            name=data.get("name"),
            description=data.get("description"),
            mime_type=data.get("mimeType"),
        )
    return None


@dataclass
class ToolResult:
    """Outcome of a ``tools/call`` request."""
    content: List[ContentItem] = field(default_factory=list)
    structured_content: Any = None
    is_error: bool = False
    meta: Optional[Dict[str, Any]] = None
    error_data: Any = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ToolResult":
        items = []
        for raw in data.get("content") or []:
            if isinstance(raw, dict):
                item = parse_content_item(raw)
                if item is not None:
                    items.append(item)
        return cls(
            content=items,
            structured_content=data.get("structuredContent"),
            is_error=bool(data.get("isError", False)),
            meta=data.get("_meta"),
        )

    def first_text(self) -> Optional[str]:
        for item in self.content:
            if isinstance(item, TextContent):
                return item.text
        return None


@dataclass
class Capabilities:
    """What the server advertised in its ``initialize`` answer."""
    protocol_version: Optional[str] = None
    tools: bool = False
    resources: bool = False
    prompts: bool = False
    server_info: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Capabilities":
        caps = data.get("capabilities") or {}
        return cls(
            protocol_version=data.get("protocolVersion"),
            tools="tools" in caps,
            resources="resources" in caps,
            prompts="prompts" in caps,
            server_info=data.get("serverInfo") or {},
        )


@dataclass
class Resource:
    uri: str
    mime_type: Optional[str] = None
    text: Optional[str] = None
    blob: Optional[str] = None


@dataclass
class App:
    """A connected remote tool server."""
    id: str
    name: str
    server_url: str
    tools: List[Tool] = field(default_factory=list)
    connection_status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    description: str = ""
    icon: Optional[str] = None
    capabilities: Optional[Capabilities] = None

    def find_tool(self, tool_name: str) -> Optional[Tool]:
        for tool in self.tools:
            if tool.name == tool_name:
                return tool
        return None

    def find_tool_by_title(self, title: str) -> Optional[Tool]:
        wanted = title.strip().lower()
        for tool in self.tools:
            if tool.title and tool.title.strip().lower() == wanted:
                return tool
        return None
