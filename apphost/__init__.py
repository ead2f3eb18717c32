"""
MCP App Host

Host-side orchestration for MCP tool servers:
- Connection registry (initialize + tool discovery per app)
- Tool invocation with schema-derived required-parameter detection
- Conversational parameter collection driven by an LLM
- Message routing inside an app context
- One event channel for UI notifications
"""

from .config import HostConfig, LLMConfig, LoggingConfig, OrchestrationConfig, ProtocolConfig
from .directory import AppDirectory, DirectoryEntry
from .events import (
    ConnectionChanged,
    EventChannel,
    HostEvent,
    NeedsPillsRefresh,
    NotificationHooks,
    ParameterCollectionStarted,
    ToolInvoked,
)
from .exceptions import (
    AppNotConnectedError,
    HostError,
    ParameterExtractionParseFailure,
    ProtocolInitFailure,
    ProtocolListToolsFailure,
    RoutingDecisionParseFailure,
    ToolExecutionFailure,
    ToolNotFoundError,
)
from .host import AppHost
from .invocation import InvocationResult, OutcomeKind, ToolInvocationController
from .llm_service import GenerativeTextDelegate, LLMService, ModelType
from .logger import setup_logging
from .mcp_client import McpHttpClient, ProtocolClient
from .models import App, Capabilities, ConnectionStatus, Resource, TextContent, Tool, ToolResult
from .parameter_collection import ParameterCollectionStateMachine
from .registry import ConnectionRegistry, ConnectResult
from .router import MessageRouter, RoutingDecision
from .session import InvokedToolState, ParameterCollectionState, Session, SessionContextManager

__all__ = [
    # Host
    "AppHost",
    "HostConfig",
    "ProtocolConfig",
    "LLMConfig",
    "OrchestrationConfig",
    "LoggingConfig",
    "setup_logging",

    # Components
    "ConnectionRegistry",
    "ConnectResult",
    "ToolInvocationController",
    "InvocationResult",
    "OutcomeKind",
    "ParameterCollectionStateMachine",
    "MessageRouter",
    "RoutingDecision",
    "Session",
    "SessionContextManager",
    "ParameterCollectionState",
    "InvokedToolState",
    "AppDirectory",
    "DirectoryEntry",

    # Collaborators
    "ProtocolClient",
    "McpHttpClient",
    "GenerativeTextDelegate",
    "LLMService",
    "ModelType",

    # Data model
    "App",
    "Tool",
    "ToolResult",
    "TextContent",
    "Capabilities",
    "Resource",
    "ConnectionStatus",

    # Events
    "EventChannel",
    "HostEvent",
    "NotificationHooks",
    "ConnectionChanged",
    "ToolInvoked",
    "ParameterCollectionStarted",
    "NeedsPillsRefresh",

    # Errors
    "HostError",
    "AppNotConnectedError",
    "ToolNotFoundError",
    "ProtocolInitFailure",
    "ProtocolListToolsFailure",
    "ToolExecutionFailure",
    "ParameterExtractionParseFailure",
    "RoutingDecisionParseFailure",
]
