from apphost.config import HostConfig
from apphost.exceptions import ToolNotFoundError, get_exception_details
from apphost.logger import sanitize_message


def test_from_env_reads_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("MCP_INIT_TIMEOUT", "4")
    monkeypatch.delenv("MCP_LIST_TOOLS_TIMEOUT", raising=False)
    monkeypatch.setenv("APPHOST_TOOL_CALL_TIMEOUT", "12.5")
    monkeypatch.setenv("GROQ_API_KEY", "gk")
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.setenv("GOOGLE_API_KEY", "google")
    monkeypatch.setenv("APPHOST_MODEL_TYPE", "GEMINI")

    config = HostConfig.from_env(str(tmp_path / ".env"))

    assert config.protocol.init_timeout == 4.0
    # list timeout falls back to the init timeout
    assert config.protocol.list_tools_timeout == 4.0
    assert config.orchestration.tool_call_timeout == 12.5
    assert config.orchestration.default_model == "gemini"
    assert config.llm.groq_api_key == "gk"
    assert config.llm.gemini_api_key == "google"


def test_bad_timeout_falls_back(monkeypatch, tmp_path):
    monkeypatch.setenv("APPHOST_CONNECT_TIMEOUT", "soon")
    monkeypatch.delenv("MCP_INIT_TIMEOUT", raising=False)
    monkeypatch.delenv("MCP_LIST_TOOLS_TIMEOUT", raising=False)

    config = HostConfig.from_env(str(tmp_path / ".env"))

    assert config.orchestration.connect_timeout == 15.0
    assert config.protocol.list_tools_timeout == 10.0


def test_dotenv_file_is_loaded(monkeypatch, tmp_path):
    monkeypatch.delenv("APPHOST_APPS_CONFIG", raising=False)
    env_file = tmp_path / ".env"
    env_file.write_text("APPHOST_APPS_CONFIG=/etc/apps.json\n", encoding="utf-8")

    config = HostConfig.from_env(str(env_file))

    monkeypatch.delenv("APPHOST_APPS_CONFIG", raising=False)
    assert config.apps_config_path == "/etc/apps.json"


def test_exception_details():
    details = get_exception_details(ToolNotFoundError("weather-app", "get_radar"))

    assert details["type"] == "ToolNotFoundError"
    assert details["error_code"] == "tool_not_found"
    assert details["details"] == {"app_id": "weather-app", "tool_name": "get_radar"}
    assert get_exception_details(ValueError("x"))["error_code"] == "internal_error"


def test_sanitize_message():
    assert sanitize_message("it’s\x00 fine — ok") == "it's fine -- ok"
