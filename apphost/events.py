"""
Outbound event channel.

Orchestration components publish a closed set of domain events; the UI layer
subscribes once instead of registering one callback per notification.
Delivery is fire-and-forget: a failing handler is logged and never affects
the publisher or the other handlers.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Union

from .models import ConnectionStatus, Tool

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConnectionChanged:
    app_id: str
    status: ConnectionStatus
    error: Optional[str] = None


@dataclass(frozen=True)
class ToolInvoked:
    app_id: str
    tool: Tool


@dataclass(frozen=True)
class ToolResult:
    app_id: str
    tool: Tool
    result_text: str
    raw_result: Any
    arguments: Dict[str, Any]


@dataclass(frozen=True)
class ParameterCollectionStarted:
    app_id: str
    tool: Tool
    required: tuple


@dataclass(frozen=True)
class NeedsPillsRefresh:
    app_id: str


HostEvent = Union[ConnectionChanged, ToolInvoked, ToolResult, ParameterCollectionStarted, NeedsPillsRefresh]
EventHandler = Callable[[HostEvent], Any]


class EventChannel:
    """Single outbound channel for host events."""

    def __init__(self):
        self._subscribers: List[EventHandler] = []
        self._pending: set = set()

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        """Register a handler; returns a callable that unsubscribes it."""
        self._subscribers.append(handler)

        def unsubscribe() -> None:
            if handler in self._subscribers:
                self._subscribers.remove(handler)

        return unsubscribe

    def publish(self, event: HostEvent) -> None:
        logger.debug(f"📣 {type(event).__name__}: {event.app_id}")
        for handler in list(self._subscribers):
            try:
                outcome = handler(event)
            except Exception as e:
                logger.warning(f"⚠️ Event handler {handler!r} failed on {type(event).__name__}: {e}")
                continue
            if inspect.isawaitable(outcome):
                self._schedule(outcome, event)

    def _schedule(self, awaitable, event: HostEvent) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No running loop to deliver on
            logger.warning(f"⚠️ Dropped async handler for {type(event).__name__}: no running event loop")
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return
        task = asyncio.ensure_future(awaitable, loop=loop)
        self._pending.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: "asyncio.Future") -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(f"⚠️ Async event handler failed: {exc}")

    async def drain(self) -> None:
        """Wait for scheduled async handlers to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)


class NotificationHooks:
    """
    Adapter for consumers that want the five classic callbacks.

    Usage:
        hooks = NotificationHooks(on_tool_result_received=show_result)
        hooks.attach(host.events)
    """

    def __init__(
        self,
        on_tool_invoked: Optional[Callable[[str, Tool], Any]] = None,
        on_connection_status_changed: Optional[Callable[[str, ConnectionStatus], Any]] = None,
        on_tool_result_received: Optional[Callable[[str, Tool, str, Any, Dict[str, Any]], Any]] = None,
        on_parameter_collection_started: Optional[Callable[[str, Tool], Any]] = None,
        on_need_to_show_tool_pills: Optional[Callable[[str], Any]] = None,
    ):
        self.on_tool_invoked = on_tool_invoked
        self.on_connection_status_changed = on_connection_status_changed
        self.on_tool_result_received = on_tool_result_received
        self.on_parameter_collection_started = on_parameter_collection_started
        self.on_need_to_show_tool_pills = on_need_to_show_tool_pills

    def attach(self, channel: EventChannel) -> Callable[[], None]:
        return channel.subscribe(self)

    def __call__(self, event: HostEvent) -> Any:
        if isinstance(event, ToolInvoked) and self.on_tool_invoked:
            return self.on_tool_invoked(event.app_id, event.tool)
        if isinstance(event, ConnectionChanged) and self.on_connection_status_changed:
            return self.on_connection_status_changed(event.app_id, event.status)
        if isinstance(event, ToolResult) and self.on_tool_result_received:
            return self.on_tool_result_received(
                event.app_id, event.tool, event.result_text, event.raw_result, event.arguments
            )
        if isinstance(event, ParameterCollectionStarted) and self.on_parameter_collection_started:
            return self.on_parameter_collection_started(event.app_id, event.tool)
        if isinstance(event, NeedsPillsRefresh) and self.on_need_to_show_tool_pills:
            return self.on_need_to_show_tool_pills(event.app_id)
        return None
