"""
Connection Registry - owns the connected apps and their discovered tools.

The only component that calls ``initialize`` and ``list_tools`` on the
protocol client.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Optional

from .events import ConnectionChanged, EventChannel
from .exceptions import HostError, ProtocolInitFailure, ProtocolListToolsFailure, describe_failure
from .mcp_client import ProtocolClient
from .models import App, ConnectionStatus
from .session import Session, SessionContextManager
from .tool_logger import ToolLogger, get_tool_logger

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 15.0


@dataclass
class ConnectResult:
    """Outcome of a connect attempt: an App or an error, never both."""
    app: Optional[App] = None
    error: Optional[HostError] = None

    @property
    def ok(self) -> bool:
        return self.app is not None and self.error is None

    @property
    def message(self) -> str:
        if self.ok:
            return f"Connected to {self.app.name}"
        return self.error.message if self.error else "Connection failed"


class ConnectionRegistry:
    """
    Map of connected apps keyed by app id.

    Usage:
        result = await registry.connect("weather-app", "https://weather.example.com/mcp")
        if result.ok:
            tools = registry.get("weather-app").tools
    """

    def __init__(
        self,
        session: Session,
        client: ProtocolClient,
        events: EventChannel,
        context: SessionContextManager,
        timeout: float = DEFAULT_CONNECT_TIMEOUT,
        tool_logger: Optional[ToolLogger] = None,
    ):
        self.session = session
        self.client = client
        self.events = events
        self.context = context
        self.timeout = timeout
        self.tool_logger = tool_logger or get_tool_logger()

    async def connect(
        self,
        app_id: str,
        server_url: str,
        name: Optional[str] = None,
        description: str = "",
        icon: Optional[str] = None,
    ) -> ConnectResult:
        """Handshake, discover tools and register the app."""
        logger.info(f"🔌 Connecting to '{app_id}' at {server_url}")

        try:
            capabilities = await asyncio.wait_for(self.client.initialize(server_url), timeout=self.timeout)
        except asyncio.TimeoutError:
            return self._fail(app_id, ProtocolInitFailure(
                f"Failed to initialize {app_id}: timed out after {self.timeout:.0f}s",
                {"app_id": app_id, "server_url": server_url},
            ))
        except Exception as e:
            return self._fail(app_id, ProtocolInitFailure(
                describe_failure(f"Failed to initialize {app_id}", e),
                {"app_id": app_id, "server_url": server_url, "cause": type(e).__name__},
            ))

        if capabilities is None:
            return self._fail(app_id, ProtocolInitFailure(
                f"Failed to initialize {app_id}",
                {"app_id": app_id, "server_url": server_url},
            ))

        try:
            tools = await asyncio.wait_for(self.client.list_tools(server_url), timeout=self.timeout)
        except asyncio.TimeoutError:
            return self._fail(app_id, ProtocolListToolsFailure(
                f"Failed to list tools for {app_id}: timed out after {self.timeout:.0f}s",
                {"app_id": app_id, "server_url": server_url},
            ))
        except Exception as e:
            return self._fail(app_id, ProtocolListToolsFailure(
                describe_failure(f"Failed to list tools for {app_id}", e),
                {"app_id": app_id, "server_url": server_url, "cause": type(e).__name__},
            ))

        app = App(
            id=app_id,
            name=name or app_id,
            server_url=server_url,
            tools=list(tools),
            connection_status=ConnectionStatus.CONNECTED,
            description=description,
            icon=icon,
            capabilities=capabilities,
        )
        self.session.connected_apps[app_id] = app

        self.tool_logger.log_mcp_connection(app_id, len(app.tools), success=True)
        logger.info(f"✅ Connected to '{app_id}' with {len(app.tools)} tools")
        self.events.publish(ConnectionChanged(app_id=app_id, status=ConnectionStatus.CONNECTED))
        return ConnectResult(app=app)

    def _fail(self, app_id: str, error: HostError) -> ConnectResult:
        logger.error(f"❌ {error.message}")
        self.tool_logger.log_mcp_connection(app_id, 0, success=False, error=error.message)
        self.events.publish(ConnectionChanged(app_id=app_id, status=ConnectionStatus.ERROR, error=error.message))
        return ConnectResult(error=error)

    async def disconnect(self, app_id: str) -> None:
        """Remove the app (no error if absent) and drop state tied to it."""
        app = self.session.connected_apps.pop(app_id, None)
        self.context.clear_for_app(app_id)
        self.events.publish(ConnectionChanged(app_id=app_id, status=ConnectionStatus.DISCONNECTED))

        if app is None:
            return
        logger.info(f"🔌 Disconnected from '{app_id}'")
        try:
            await self.client.release(app.server_url)
        except Exception as e:
            logger.warning(f"⚠️ Releasing {app.server_url} failed: {e}")

    def is_connected(self, app_id: str) -> bool:
        return app_id in self.session.connected_apps

    def get(self, app_id: str) -> Optional[App]:
        return self.session.connected_apps.get(app_id)

    def connected_apps(self) -> Dict[str, App]:
        return dict(self.session.connected_apps)
