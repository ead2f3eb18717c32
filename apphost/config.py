"""
Host Configuration Loader

Single source of truth for protocol, LLM, orchestration and logging settings.
Values come from the environment (a local .env file is loaded first).
"""

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv


def _env_timeout(name: str, default: float) -> float:
    """Read a timeout value from env, falling back safely."""
    try:
        raw = (os.getenv(name) or "").strip()
        return float(raw) if raw else float(default)
    except ValueError:
        return float(default)


def _get_env(*keys: str, default: str = "") -> str:
    """Get first available env var from list of keys."""
    for key in keys:
        val = os.getenv(key)
        if val:
            return val
    return default


@dataclass
class ProtocolConfig:
    """MCP client settings."""
    request_timeout: float = 30.0
    init_timeout: float = 10.0
    list_tools_timeout: float = 10.0
    protocol_version: str = "2024-11-05"
    client_name: str = "mcp-apphost"
    client_version: str = "1.0.0"


@dataclass
class LLMConfig:
    """Groq/Gemini provider settings."""
    groq_api_key: Optional[str] = None
    gemini_api_key: Optional[str] = None
    groq_model: str = "llama-3.3-70b-versatile"
    gemini_model: str = "gemini-2.5-flash"
    temperature: float = 0.7
    max_tokens: int = 1000
    request_timeout: float = 30.0


@dataclass
class OrchestrationConfig:
    """Timeouts applied around every collaborator call."""
    connect_timeout: float = 15.0
    tool_call_timeout: float = 60.0
    llm_timeout: float = 30.0
    default_model: str = "default"


@dataclass
class LoggingConfig:
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    log_file: Optional[str] = None
    tool_log_file: Optional[str] = None


@dataclass
class HostConfig:
    """
    Complete host configuration.

    Usage:
        config = HostConfig.from_env()
        host = AppHost.from_config(config)
    """
    protocol: ProtocolConfig = field(default_factory=ProtocolConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    orchestration: OrchestrationConfig = field(default_factory=OrchestrationConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    apps_config_path: str = "mcp_apps.json"

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "HostConfig":
        """Load configuration from environment variables."""
        load_dotenv(dotenv_path)

        init_timeout = _env_timeout("MCP_INIT_TIMEOUT", 10.0)
        protocol = ProtocolConfig(
            request_timeout=_env_timeout("MCP_REQUEST_TIMEOUT", 30.0),
            init_timeout=init_timeout,
            list_tools_timeout=_env_timeout("MCP_LIST_TOOLS_TIMEOUT", init_timeout),
            protocol_version=_get_env("MCP_PROTOCOL_VERSION", default="2024-11-05"),
            client_name=_get_env("MCP_CLIENT_NAME", default="mcp-apphost"),
            client_version=_get_env("MCP_CLIENT_VERSION", default="1.0.0"),
        )

        llm = LLMConfig(
            groq_api_key=_get_env("GROQ_API_KEY") or None,
            gemini_api_key=_get_env("GEMINI_API_KEY", "GOOGLE_API_KEY") or None,
            groq_model=_get_env("GROQ_MODEL", default="llama-3.3-70b-versatile"),
            gemini_model=_get_env("GEMINI_MODEL", default="gemini-2.5-flash"),
            temperature=float(_get_env("LLM_TEMPERATURE", default="0.7")),
            max_tokens=int(_get_env("LLM_MAX_TOKENS", default="1000")),
            request_timeout=_env_timeout("LLM_REQUEST_TIMEOUT", 30.0),
        )

        orchestration = OrchestrationConfig(
            connect_timeout=_env_timeout("APPHOST_CONNECT_TIMEOUT", 15.0),
            tool_call_timeout=_env_timeout("APPHOST_TOOL_CALL_TIMEOUT", 60.0),
            llm_timeout=_env_timeout("APPHOST_LLM_TIMEOUT", 30.0),
            default_model=_get_env("APPHOST_MODEL_TYPE", default="default").lower(),
        )

        log_config = LoggingConfig(
            level=_get_env("LOG_LEVEL", default="INFO").upper(),
            format=_get_env("LOG_FORMAT", default=LoggingConfig.format),
            log_file=_get_env("LOG_FILE") or None,
            tool_log_file=_get_env("TOOL_LOG_FILE") or None,
        )

        return cls(
            protocol=protocol,
            llm=llm,
            orchestration=orchestration,
            logging=log_config,
            apps_config_path=_get_env("APPHOST_APPS_CONFIG", default="mcp_apps.json"),
        )
