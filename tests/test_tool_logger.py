import pytest

from apphost.tool_logger import ToolLogger


def test_tool_call_history_and_stats():
    tool_log = ToolLogger(max_history=2)

    with tool_log.tool_call("get_forecast", "weather-app", {"city": "Paris"}) as log:
        log.success = True
        log.result_type = "text"
    with pytest.raises(RuntimeError):
        with tool_log.tool_call("get_alerts", "weather-app"):
            raise RuntimeError("down")
    with tool_log.tool_call("get_alerts", "weather-app") as log:
        log.success = True

    recent = tool_log.get_recent_calls()
    assert len(recent) == 2
    assert recent[0].error == "down"
    stats = tool_log.get_call_stats()
    assert stats["total_calls"] == 2
    assert stats["by_tool"] == {"get_alerts": 2}
    assert stats["success_rate"] == 50.0


def test_collection_lifecycle_logging():
    tool_log = ToolLogger()

    tool_log.log_collection_start("weather-app", "get_forecast", ["city"])
    tool_log.log_collection_turn("weather-app", "get_forecast", [], ["city"])
    assert tool_log.active_collections["weather-app:get_forecast"].turn_count == 1

    tool_log.log_collection_end("weather-app", "get_forecast", reason="done")
    assert tool_log.active_collections == {}


def test_tool_log_file(tmp_path):
    path = tmp_path / "tools.log"
    tool_log = ToolLogger(log_file=str(path))

    with tool_log.tool_call("get_forecast", "weather-app") as log:
        log.success = True
    for handler in tool_log.file_logger.handlers:
        handler.flush()

    assert "TOOL_CALL | tool=get_forecast" in path.read_text(encoding="utf-8")
