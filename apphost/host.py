"""
App Host - wires the orchestration components around one Session.

Usage:
    host = AppHost.from_config(HostConfig.from_env())
    host.events.subscribe(print)

    await host.connect_app("weather-app")
    outcome = await host.invoke_tool("weather-app", "get_forecast")
    reply = await host.handle_chat_message("it's Paris")
"""

import logging
from typing import Any, Dict, Optional, Sequence, Tuple

from .config import HostConfig, OrchestrationConfig
from .directory import AppDirectory
from .events import EventChannel
from .exceptions import AppNotConnectedError
from .invocation import InvocationResult, ToolInvocationController
from .llm_service import GenerativeTextDelegate, LLMService, ModelType
from .mcp_client import McpHttpClient, ProtocolClient
from .parameter_collection import ParameterCollectionStateMachine
from .registry import ConnectionRegistry, ConnectResult
from .router import MessageRouter
from .session import Session, SessionContextManager
from .telemetry import flush_telemetry
from .tool_logger import ToolLogger, get_tool_logger

logger = logging.getLogger(__name__)


class AppHost:
    """Facade over registry, controller, collection, router and context."""

    def __init__(
        self,
        client: ProtocolClient,
        delegate: GenerativeTextDelegate,
        directory: Optional[AppDirectory] = None,
        session: Optional[Session] = None,
        events: Optional[EventChannel] = None,
        orchestration: Optional[OrchestrationConfig] = None,
        tool_logger: Optional[ToolLogger] = None,
    ):
        orchestration = orchestration or OrchestrationConfig()
        model_type = ModelType.parse(orchestration.default_model)

        self.client = client
        self.delegate = delegate
        self.directory = directory or AppDirectory()
        self.session = session or Session()
        self.events = events or EventChannel()
        self.tool_logger = tool_logger or get_tool_logger()

        self.context = SessionContextManager(self.session, self.events, self.tool_logger)
        self.registry = ConnectionRegistry(
            self.session, client, self.events, self.context,
            timeout=orchestration.connect_timeout, tool_logger=self.tool_logger,
        )
        self.controller = ToolInvocationController(
            self.session, client, self.events, self.context,
            timeout=orchestration.tool_call_timeout, tool_logger=self.tool_logger,
        )
        self.collection = ParameterCollectionStateMachine(
            self.session, delegate, self.controller, self.events, self.context,
            model_type=model_type, timeout=orchestration.llm_timeout, tool_logger=self.tool_logger,
        )
        self.controller.collector = self.collection
        self.router = MessageRouter(
            self.session, delegate, self.controller, self.context,
            model_type=model_type, timeout=orchestration.llm_timeout, tool_logger=self.tool_logger,
        )

    @classmethod
    def from_config(cls, config: HostConfig) -> "AppHost":
        """Build a host with the HTTP protocol client and the Groq/Gemini service."""
        return cls(
            client=McpHttpClient(config.protocol),
            delegate=LLMService(config.llm),
            directory=AppDirectory.from_file(config.apps_config_path),
            orchestration=config.orchestration,
            tool_logger=ToolLogger(log_file=config.logging.tool_log_file),
        )

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    async def connect_app(self, app_id: str, enter_context: bool = True) -> ConnectResult:
        """Connect to a directory app and, on success, enter its context."""
        entry = self.directory.get(app_id)
        if entry is None:
            error = AppNotConnectedError(app_id, f"App not found: {app_id}")
            logger.error(f"❌ {error.message}")
            return ConnectResult(error=error)

        result = await self.registry.connect(
            app_id, entry.server_url, name=entry.name, description=entry.description, icon=entry.icon
        )
        if result.ok and enter_context:
            self.context.enter(app_id)
        return result

    async def connect_url(self, app_id: str, server_url: str, name: Optional[str] = None,
                          enter_context: bool = True) -> ConnectResult:
        result = await self.registry.connect(app_id, server_url, name=name)
        if result.ok and enter_context:
            self.context.enter(app_id)
        return result

    async def disconnect_app(self, app_id: str) -> None:
        await self.registry.disconnect(app_id)

    # ------------------------------------------------------------------
    # Tools and chat
    # ------------------------------------------------------------------

    async def invoke_tool(
        self,
        app_id: str,
        tool_name: str,
        parameters: Optional[Dict[str, Any]] = None,
    ) -> InvocationResult:
        return await self.controller.invoke(app_id, tool_name, parameters)

    async def handle_chat_message(
        self,
        text: str,
        history: Optional[Sequence[Tuple[str, str]]] = None,
    ) -> Optional[str]:
        """
        Route one chat turn.

        Returns None when no app context is active (the caller handles the
        turn itself), otherwise the text to show ("" when a tool ran and its
        result arrives as an event).
        """
        if self.collection.is_collecting():
            return await self.collection.continue_turn(text)
        if not self.context.is_active():
            return None
        return await self.router.handle_message(text, history)

    def enter_context(self, app_id: str) -> bool:
        return self.context.enter(app_id)

    def exit_context(self) -> None:
        self.context.set_context(None)

    def clear_state(self) -> None:
        self.context.clear_state()

    def is_in_context(self) -> bool:
        return self.context.is_active()

    async def aclose(self) -> None:
        """Close owned HTTP clients and flush telemetry."""
        for component in (self.client, self.delegate):
            close = getattr(component, "aclose", None)
            if close is not None:
                await close()
        flush_telemetry()
