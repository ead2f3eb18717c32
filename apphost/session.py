"""
Session state and the context manager that guards it.

A Session holds every piece of mutable orchestration state for one user:
the connected apps, the current context, the single active parameter
collection and the last invocation. Components receive the Session they act
on; there is no module-level state.

All mutation happens synchronously on the event loop. Components re-check
what they read before an await once the await returns.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .events import EventChannel, NeedsPillsRefresh
from .models import App, Tool
from .tool_logger import ToolLogger, get_tool_logger

logger = logging.getLogger(__name__)


class CollectionPhase(Enum):
    COLLECTING = "collecting"
    EXECUTED = "executed"
    ABORTED = "aborted"


@dataclass
class ParameterCollectionState:
    """An in-progress dialogue filling a tool's required parameters."""
    app_id: str
    tool: Tool
    required_params: List[str]
    collected_params: Dict[str, Any] = field(default_factory=dict)
    turn_history: List[Tuple[str, str]] = field(default_factory=list)
    phase: CollectionPhase = CollectionPhase.COLLECTING

    def remaining(self) -> List[str]:
        return [p for p in self.required_params if p not in self.collected_params]

    def is_complete(self) -> bool:
        return not self.remaining()


@dataclass
class InvokedToolState:
    """Single-slot cache of the last successful invocation."""
    app_id: str
    tool: Tool
    parameters: Dict[str, Any]
    result: str


class Session:
    """
    Explicit orchestration state for one conversation.

    Usage:
        session = Session()
        registry = ConnectionRegistry(session, client, events, context)
    """

    def __init__(self, session_id: Optional[str] = None):
        self.session_id = session_id or uuid.uuid4().hex
        self.connected_apps: Dict[str, App] = {}
        self.current_app_id: Optional[str] = None
        self.active_collection: Optional[ParameterCollectionState] = None
        self.last_invocation: Optional[InvokedToolState] = None
        # Serializes collection turns
        self.collection_lock = asyncio.Lock()
        self._invocation_locks: Dict[str, asyncio.Lock] = {}

    def invocation_lock(self, app_id: str) -> asyncio.Lock:
        """One in-flight tool execution per app."""
        lock = self._invocation_locks.get(app_id)
        if lock is None:
            lock = asyncio.Lock()
            self._invocation_locks[app_id] = lock
        return lock

    def discard_invocation_lock(self, app_id: str) -> None:
        """Forget an idle app's lock. A held lock is discarded by its holder."""
        lock = self._invocation_locks.get(app_id)
        if lock is not None and not lock.locked():
            del self._invocation_locks[app_id]

    def snapshot(self) -> Dict[str, Any]:
        collection = self.active_collection
        return {
            "session_id": self.session_id,
            "connected_apps": sorted(self.connected_apps),
            "current_app_id": self.current_app_id,
            "collecting": None if collection is None else {
                "app_id": collection.app_id,
                "tool": collection.tool.name,
                "remaining": collection.remaining(),
            },
            "last_invocation": None if self.last_invocation is None else {
                "app_id": self.last_invocation.app_id,
                "tool": self.last_invocation.tool.name,
            },
        }


class SessionContextManager:
    """Tracks the current app context and cascades teardown."""

    def __init__(self, session: Session, events: EventChannel, tool_logger: Optional[ToolLogger] = None):
        self.session = session
        self.events = events
        self.tool_logger = tool_logger or get_tool_logger()

    def get_context(self) -> Optional[str]:
        return self.session.current_app_id

    def get_context_app(self) -> Optional[App]:
        app_id = self.session.current_app_id
        return self.session.connected_apps.get(app_id) if app_id else None

    def is_active(self) -> bool:
        return self.session.current_app_id is not None

    def set_context(self, app_id: Optional[str]) -> bool:
        """
        Point free-text routing at ``app_id``.

        ``None`` clears the context along with any collection and last
        invocation. Unknown app ids are refused so the context never points
        at a disconnected app.
        """
        if app_id is None:
            previous = self.session.current_app_id
            self.session.current_app_id = None
            self.abort_collection("context cleared")
            self.session.last_invocation = None
            if previous:
                logger.info(f"🚪 Left context of '{previous}'")
            return True

        if app_id not in self.session.connected_apps:
            logger.warning(f"⚠️ Refusing context for '{app_id}': app is not connected")
            return False

        collection = self.session.active_collection
        if collection is not None and collection.app_id != app_id:
            self.abort_collection(f"context moved to {app_id}")

        if self.session.current_app_id != app_id:
            logger.info(f"🎯 Context set to '{app_id}'")
        self.session.current_app_id = app_id
        return True

    def enter(self, app_id: str) -> bool:
        """Set context and hint the UI to show the app's tools."""
        if not self.set_context(app_id):
            return False
        self.events.publish(NeedsPillsRefresh(app_id=app_id))
        return True

    def clear_for_app(self, app_id: str) -> None:
        """Drop everything tied to ``app_id``."""
        self.session.discard_invocation_lock(app_id)
        if self.session.current_app_id == app_id:
            self.set_context(None)
            return
        collection = self.session.active_collection
        if collection is not None and collection.app_id == app_id:
            self.abort_collection(f"{app_id} disconnected")
        last = self.session.last_invocation
        if last is not None and last.app_id == app_id:
            self.session.last_invocation = None

    def clear_state(self) -> None:
        """Full reset of context, collection and last invocation."""
        self.set_context(None)
        self.session.active_collection = None
        self.session.last_invocation = None

    def abort_collection(self, reason: str) -> None:
        collection = self.session.active_collection
        if collection is None:
            return
        collection.phase = CollectionPhase.ABORTED
        self.session.active_collection = None
        self.tool_logger.log_collection_end(collection.app_id, collection.tool.name, reason=reason)
