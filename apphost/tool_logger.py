"""
Tool Logger - records every MCP tool execution and collection dialogue.

Shows, per call:
- Which app and tool was called
- The arguments
- The execution time
- The result (success/failure)
- Parameter collection state

Usage:
    from apphost.tool_logger import get_tool_logger

    tool_log = get_tool_logger()
    with tool_log.tool_call("get_forecast", app_id="weather-app", params=args) as log:
        result = await client.call_tool(...)
        log.success = True
"""

import json
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional


class Colors:
    """ANSI color codes for terminal output."""
    RESET = "\033[0m"

    MCP_SERVER = "\033[38;5;39m"       # Blue
    LLM = "\033[38;5;141m"             # Purple

    SUCCESS = "\033[38;5;40m"          # Green
    ERROR = "\033[38;5;196m"           # Red
    WARNING = "\033[38;5;220m"         # Yellow
    INFO = "\033[38;5;45m"             # Cyan

    SESSION_START = "\033[38;5;51m"    # Light cyan
    SESSION_CONTINUE = "\033[38;5;219m"  # Pink
    SESSION_END = "\033[38;5;245m"     # Gray


@dataclass
class ToolCallLog:
    """Record of a single tool call."""
    tool_name: str
    app_id: str
    params: Dict[str, Any]
    started_at: datetime
    ended_at: Optional[datetime] = None
    duration_ms: float = 0.0
    success: bool = False
    error: Optional[str] = None
    result_type: Optional[str] = None  # "text", "content", "empty", "error"


@dataclass
class CollectionLog:
    """Record of a parameter collection dialogue."""
    app_id: str
    tool_name: str
    started_at: datetime
    last_activity: datetime
    turn_count: int = 0


class ToolLogger:
    """
    Logger for MCP tool calls and parameter collection dialogues.

    Console output goes to the ``apphost.tool_console`` logger, structured
    lines to ``apphost.tool_file`` (file handler only when a path is given).
    """

    def __init__(self, log_file: Optional[str] = None, max_history: int = 1000):
        self.log_file = log_file
        self._setup_loggers()

        self.call_history: List[ToolCallLog] = []
        self.max_history = max_history

        # Keyed by "<app_id>:<tool_name>"
        self.active_collections: Dict[str, CollectionLog] = {}

    def _setup_loggers(self):
        """Set up console and file loggers."""
        self.console_logger = logging.getLogger("apphost.tool_console")
        self.file_logger = logging.getLogger("apphost.tool_file")

        if self.log_file:
            self.file_logger.setLevel(logging.DEBUG)
            self.file_logger.propagate = False
            self.file_logger.handlers = []
            file_handler = logging.FileHandler(self.log_file, mode='a', encoding='utf-8')
            file_handler.setFormatter(logging.Formatter('%(asctime)s | %(levelname)s | %(message)s'))
            self.file_logger.addHandler(file_handler)

    def _format_params(self, params: Dict[str, Any], max_length: int = 100) -> str:
        """Format parameters for display."""
        if not params:
            return "{}"
        try:
            formatted = json.dumps(params, default=str)
        except (TypeError, ValueError):
            formatted = str(params)
        if len(formatted) > max_length:
            return formatted[:max_length] + "..."
        return formatted

    def log_routing_decision(self, message: str, action: str, tool_name: Optional[str] = None, reason: str = ""):
        """Log a routing decision."""
        msg_preview = message[:50] + "..." if len(message) > 50 else message
        parts = [f"{Colors.INFO}🎯 ROUTING{Colors.RESET}", f"  Message: \"{msg_preview}\"", f"  Action: {action}"]
        if tool_name:
            parts.append(f"  → {Colors.MCP_SERVER}🔌 {tool_name}{Colors.RESET}")
        if reason:
            parts.append(f"  Reason: {reason}")

        self.console_logger.info("\n".join(parts))
        self.file_logger.info(f"ROUTING | message=\"{msg_preview}\" | action={action} | tool={tool_name}")

    @contextmanager
    def tool_call(self, tool_name: str, app_id: str, params: Optional[Dict[str, Any]] = None):
        """
        Context manager for logging a tool call.

        Usage:
            with tool_log.tool_call("get_forecast", "weather-app", args) as log:
                result = await client.call_tool(...)
                log.success = True
                log.result_type = "text"
        """
        log = ToolCallLog(
            tool_name=tool_name,
            app_id=app_id,
            params=dict(params or {}),
            started_at=datetime.now(),
        )

        self.console_logger.info(
            f"{Colors.MCP_SERVER}🔌 MCP ({app_id}): {tool_name}{Colors.RESET}\n"
            f"   Params: {self._format_params(log.params)}"
        )

        try:
            yield log
        except BaseException as e:
            log.error = str(e) or type(e).__name__
            log.success = False
            raise
        finally:
            log.ended_at = datetime.now()
            log.duration_ms = (log.ended_at - log.started_at).total_seconds() * 1000

            if log.success:
                status_color, status_icon = Colors.SUCCESS, "✅"
            elif log.error:
                status_color, status_icon = Colors.ERROR, "❌"
            else:
                status_color, status_icon = Colors.WARNING, "⚠️"

            result_info = f" → {log.result_type}" if log.result_type else ""
            self.console_logger.info(
                f"   {status_color}{status_icon} Result: {'Success' if log.success else 'Failed'}"
                f"{result_info} ({log.duration_ms:.1f}ms){Colors.RESET}"
            )
            if log.error:
                self.console_logger.info(f"   Error: {log.error}")

            self.file_logger.info(
                f"TOOL_CALL | tool={tool_name} | app={app_id} | success={log.success} | "
                f"duration_ms={log.duration_ms:.1f} | result_type={log.result_type} | error={log.error}"
            )

            self.call_history.append(log)
            if len(self.call_history) > self.max_history:
                self.call_history.pop(0)

    def log_collection_start(self, app_id: str, tool_name: str, required: List[str]):
        now = datetime.now()
        self.active_collections[f"{app_id}:{tool_name}"] = CollectionLog(
            app_id=app_id, tool_name=tool_name, started_at=now, last_activity=now
        )
        self.console_logger.info(
            f"{Colors.SESSION_START}🔗 COLLECTION START: {tool_name}{Colors.RESET}\n"
            f"   App: {app_id} | Needs: {', '.join(required)}"
        )
        self.file_logger.info(f"COLLECTION_START | app={app_id} | tool={tool_name} | required={required}")

    def log_collection_turn(self, app_id: str, tool_name: str, collected: List[str], remaining: List[str]):
        session = self.active_collections.get(f"{app_id}:{tool_name}")
        turn = 0
        if session:
            session.turn_count += 1
            session.last_activity = datetime.now()
            turn = session.turn_count

        self.console_logger.info(
            f"{Colors.SESSION_CONTINUE}🔄 COLLECTION TURN {turn}: {tool_name}{Colors.RESET}\n"
            f"   Collected: {collected} | Remaining: {remaining}"
        )
        self.file_logger.info(f"COLLECTION_TURN | app={app_id} | tool={tool_name} | turn={turn} | remaining={remaining}")

    def log_collection_end(self, app_id: str, tool_name: str, reason: str = ""):
        session = self.active_collections.pop(f"{app_id}:{tool_name}", None)
        duration_info = ""
        if session:
            duration = (datetime.now() - session.started_at).total_seconds()
            duration_info = f" | Duration: {duration:.1f}s | Turns: {session.turn_count}"

        self.console_logger.info(
            f"{Colors.SESSION_END}🔓 COLLECTION END{duration_info}{Colors.RESET}\n"
            f"   Reason: {reason or 'completed'}"
        )
        self.file_logger.info(f"COLLECTION_END | app={app_id} | tool={tool_name} | reason={reason}")

    def log_mcp_connection(self, app_id: str, tool_count: int, success: bool, error: Optional[str] = None):
        if success:
            self.console_logger.info(
                f"{Colors.MCP_SERVER}🔌 MCP CONNECTED: {app_id}{Colors.RESET}\n"
                f"   Tools available: {tool_count}"
            )
        else:
            self.console_logger.info(f"{Colors.ERROR}❌ MCP CONNECTION FAILED: {app_id} ({error}){Colors.RESET}")
        self.file_logger.info(f"MCP_CONNECTION | app={app_id} | tools={tool_count} | success={success} | error={error}")

    def get_recent_calls(self, count: int = 10) -> List[ToolCallLog]:
        """Get the most recent tool calls."""
        return self.call_history[-count:]

    def get_call_stats(self) -> Dict[str, Any]:
        """Get statistics about tool calls."""
        if not self.call_history:
            return {"total_calls": 0}

        by_app: Dict[str, int] = {}
        by_tool: Dict[str, int] = {}
        total_duration = 0.0
        success_count = 0
        for call in self.call_history:
            by_app[call.app_id] = by_app.get(call.app_id, 0) + 1
            by_tool[call.tool_name] = by_tool.get(call.tool_name, 0) + 1
            total_duration += call.duration_ms
            if call.success:
                success_count += 1

        return {
            "total_calls": len(self.call_history),
            "success_rate": success_count / len(self.call_history) * 100,
            "avg_duration_ms": total_duration / len(self.call_history),
            "by_app": by_app,
            "by_tool": by_tool,
            "active_collections": len(self.active_collections),
        }


# Global instance
_tool_logger: Optional[ToolLogger] = None


def get_tool_logger() -> ToolLogger:
    """Get the global tool logger instance."""
    global _tool_logger
    if _tool_logger is None:
        _tool_logger = ToolLogger()
    return _tool_logger
