"""
Exception hierarchy for the app host.

Orchestration components never raise these past their public methods; they
hand them back as the ``error`` of a result value. The concrete protocol and
LLM collaborators do raise them, and the orchestration layer catches them at
the boundary.
"""

from typing import Any, Dict, Optional


class HostError(Exception):
    """Base exception for all app host errors."""
    error_code = "host_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


# ============================================================================
# LOOKUP ERRORS
# ============================================================================

class AppNotConnectedError(HostError):
    """Raised when an operation targets an app that is not connected."""
    error_code = "app_not_connected"

    def __init__(self, app_id: str, message: Optional[str] = None):
        self.app_id = app_id
        super().__init__(message or f"App '{app_id}' is not connected", {"app_id": app_id})


class ToolNotFoundError(HostError):
    """Raised when a tool name is not in the connected app's tool list."""
    error_code = "tool_not_found"

    def __init__(self, app_id: str, tool_name: str):
        self.app_id = app_id
        self.tool_name = tool_name
        super().__init__(
            f"Tool '{tool_name}' not found in app '{app_id}'",
            {"app_id": app_id, "tool_name": tool_name},
        )


# ============================================================================
# CONNECTION ERRORS
# ============================================================================

class ProtocolInitFailure(HostError):
    """Raised when the server rejects or never answers ``initialize``."""
    error_code = "protocol_init_failure"


class ProtocolListToolsFailure(HostError):
    """Raised when tool discovery fails after a successful initialize."""
    error_code = "protocol_list_tools_failure"


# ============================================================================
# EXECUTION ERRORS
# ============================================================================

class ToolExecutionFailure(HostError):
    """Raised when ``tools/call`` fails in transport."""
    error_code = "tool_execution_failure"

    def __init__(self, tool_name: str, cause: BaseException):
        self.tool_name = tool_name
        self.cause = cause
        super().__init__(
            f"Tool failed: {cause}",
            {"tool_name": tool_name, "cause": type(cause).__name__},
        )


# ============================================================================
# AI OUTPUT PARSE ERRORS (recoverable)
# ============================================================================

class ParameterExtractionParseFailure(HostError):
    """Raised when a TOOL_PARAMS payload cannot be parsed or validated."""
    error_code = "parameter_extraction_parse_failure"


class RoutingDecisionParseFailure(HostError):
    """Raised when a routing response is not a usable JSON decision."""
    error_code = "routing_decision_parse_failure"


# ============================================================================
# SERVICE ERRORS
# ============================================================================

class ServiceUnavailableError(HostError):
    """Raised when an external service is unavailable."""
    error_code = "service_unavailable"


class MCPServerError(ServiceUnavailableError):
    """Raised when an MCP server request fails in transport or JSON-RPC."""
    error_code = "mcp_server_error"


class LLMServiceError(ServiceUnavailableError):
    """Raised when every LLM provider fails."""
    error_code = "llm_service_error"


class ConfigurationError(HostError):
    """Raised when configuration is invalid or missing."""
    error_code = "configuration_error"


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def get_exception_details(exception: BaseException) -> dict:
    """
    Extract details from an exception for logging or display.

    Args:
        exception: The exception to extract details from

    Returns:
        Dictionary with exception details
    """
    if isinstance(exception, HostError):
        return {
            "type": exception.__class__.__name__,
            "message": exception.message,
            "error_code": exception.error_code,
            "details": exception.details,
        }
    return {
        "type": exception.__class__.__name__,
        "message": str(exception),
        "error_code": "internal_error",
        "details": {},
    }


def describe_failure(summary: str, exception: BaseException) -> str:
    """Short user-facing message plus the underlying cause."""
    cause = exception.message if isinstance(exception, HostError) else str(exception)
    return f"{summary}: {cause}" if cause else summary
