"""
Tool Invocation Controller.

Decides whether an invocation can run now or must first collect required
parameters. The only component that calls ``call_tool``.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional

from . import events
from .exceptions import (
    AppNotConnectedError,
    HostError,
    ToolExecutionFailure,
    ToolNotFoundError,
)
from .mcp_client import ProtocolClient
from .models import Tool, ToolResult
from .session import InvokedToolState, Session, SessionContextManager
from .tool_logger import ToolLogger, get_tool_logger

if TYPE_CHECKING:
    from .parameter_collection import ParameterCollectionStateMachine

logger = logging.getLogger(__name__)

DEFAULT_TOOL_CALL_TIMEOUT = 60.0
NO_TEXT_RESULT = "Tool executed successfully"
EMPTY_RESULT = "Tool executed (no result)"

_ZERO_VALUES = {
    "string": "",
    "integer": 0,
    "number": 0.0,
    "boolean": False,
}


class OutcomeKind(Enum):
    EXECUTED = "executed"
    COLLECTION_STARTED = "collection_started"
    FAILED = "failed"


@dataclass
class InvocationResult:
    """What happened to one invocation request."""
    kind: OutcomeKind
    app_id: str
    tool_name: str
    result_text: Optional[str] = None
    raw_result: Optional[ToolResult] = None
    arguments: Dict[str, Any] = field(default_factory=dict)
    error: Optional[HostError] = None

    @property
    def ok(self) -> bool:
        return self.kind != OutcomeKind.FAILED

    @property
    def message(self) -> str:
        if self.error is not None:
            return self.error.message
        return self.result_text or ""


def _schema_type(prop: Dict[str, Any]) -> Optional[str]:
    kind = prop.get("type")
    if isinstance(kind, list):
        kind = next((k for k in kind if k != "null"), None)
    return kind


def default_value(prop: Any) -> Any:
    """Declared default, else the zero value for the property's type."""
    if not isinstance(prop, dict):
        return ""
    if "default" in prop:
        return prop["default"]
    kind = _schema_type(prop)
    if kind == "array":
        return []
    if kind == "object":
        return {}
    return _ZERO_VALUES.get(kind, "")


def build_default_arguments(tool: Tool) -> Dict[str, Any]:
    """One argument per declared property."""
    return {name: default_value(prop) for name, prop in tool.properties().items()}


def extract_result_text(result: ToolResult) -> str:
    text = result.first_text()
    if text is not None:
        return text
    return NO_TEXT_RESULT if result.content else EMPTY_RESULT


class ToolInvocationController:
    """
    Entry point for running tools.

    Usage:
        outcome = await controller.invoke("weather-app", "get_forecast")
        if outcome.kind == OutcomeKind.COLLECTION_STARTED:
            reply = await collection.continue_turn("Paris")
    """

    def __init__(
        self,
        session: Session,
        client: ProtocolClient,
        events_channel: events.EventChannel,
        context: SessionContextManager,
        timeout: float = DEFAULT_TOOL_CALL_TIMEOUT,
        tool_logger: Optional[ToolLogger] = None,
    ):
        self.session = session
        self.client = client
        self.events = events_channel
        self.context = context
        self.timeout = timeout
        self.tool_logger = tool_logger or get_tool_logger()
        # Attached by the host once the state machine exists
        self.collector: Optional["ParameterCollectionStateMachine"] = None

    def _failed(self, app_id: str, tool_name: str, error: HostError,
                arguments: Optional[Dict[str, Any]] = None) -> InvocationResult:
        logger.error(f"❌ {error.message}")
        return InvocationResult(
            kind=OutcomeKind.FAILED,
            app_id=app_id,
            tool_name=tool_name,
            arguments=dict(arguments or {}),
            error=error,
        )

    async def invoke(
        self,
        app_id: str,
        tool_name: str,
        provided_parameters: Optional[Dict[str, Any]] = None,
    ) -> InvocationResult:
        app = self.session.connected_apps.get(app_id)
        if app is None:
            return self._failed(app_id, tool_name, AppNotConnectedError(app_id))

        tool = app.find_tool(tool_name)
        if tool is None:
            return self._failed(app_id, tool_name, ToolNotFoundError(app_id, tool_name))

        # Invoking always (re)enters the app's context
        self.context.set_context(app_id)
        self.events.publish(events.NeedsPillsRefresh(app_id=app_id))
        self.events.publish(events.ToolInvoked(app_id=app_id, tool=tool))

        required = tool.required_parameters()
        logger.info(f"🔧 Invoking {app_id}.{tool_name} (required: {required})")

        if required and provided_parameters is None:
            if self.collector is None:
                raise RuntimeError("ToolInvocationController has no parameter collector attached")
            self.collector.start(app_id, tool, required)
            return InvocationResult(
                kind=OutcomeKind.COLLECTION_STARTED,
                app_id=app_id,
                tool_name=tool_name,
            )

        if provided_parameters is not None:
            arguments = dict(provided_parameters)
        else:
            arguments = build_default_arguments(tool)
        return await self.execute(app_id, tool, arguments)

    async def execute(self, app_id: str, tool: Tool, arguments: Dict[str, Any]) -> InvocationResult:
        """Single ``call_tool`` attempt with already-resolved arguments."""
        app = self.session.connected_apps.get(app_id)
        if app is None:
            return self._failed(app_id, tool.name, AppNotConnectedError(app_id), arguments)

        arguments = dict(arguments)
        failure: Optional[HostError] = None
        result: Optional[ToolResult] = None

        async with self.session.invocation_lock(app_id):
            with self.tool_logger.tool_call(tool.name, app_id, arguments) as log:
                try:
                    result = await asyncio.wait_for(
                        self.client.call_tool(app.server_url, tool.name, arguments),
                        timeout=self.timeout,
                    )
                except asyncio.TimeoutError:
                    failure = ToolExecutionFailure(tool.name, TimeoutError(f"timed out after {self.timeout:.0f}s"))
                except Exception as e:
                    failure = ToolExecutionFailure(tool.name, e)

                if failure is not None:
                    log.error = failure.message
                    log.result_type = "error"
                else:
                    log.success = not result.is_error
                    log.result_type = "error" if result.is_error else ("text" if result.first_text() is not None else "content")

        if app_id not in self.session.connected_apps:
            self.session.discard_invocation_lock(app_id)

        if failure is not None:
            return self._failed(app_id, tool.name, failure, arguments)

        result_text = extract_result_text(result)

        if app_id in self.session.connected_apps:
            self.session.last_invocation = InvokedToolState(
                app_id=app_id,
                tool=tool,
                parameters=arguments,
                result=result_text,
            )
        else:
            logger.warning(f"⚠️ {app_id} disconnected while {tool.name} was running; result not cached")

        self.events.publish(events.ToolResult(
            app_id=app_id,
            tool=tool,
            result_text=result_text,
            raw_result=result,
            arguments=arguments,
        ))
        return InvocationResult(
            kind=OutcomeKind.EXECUTED,
            app_id=app_id,
            tool_name=tool.name,
            result_text=result_text,
            raw_result=result,
            arguments=arguments,
        )
