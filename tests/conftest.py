import asyncio
from typing import Any, Dict, List, Optional

import pytest

from apphost.directory import AppDirectory, DirectoryEntry
from apphost.host import AppHost
from apphost.llm_service import GenerativeTextDelegate, ModelType
from apphost.mcp_client import ProtocolClient
from apphost.models import Capabilities, Resource, TextContent, Tool, ToolResult
from apphost.tool_logger import ToolLogger

WEATHER_URL = "https://weather-mcp.example.com"


class FakeProtocolClient(ProtocolClient):
    """Records every protocol call and answers from canned values."""

    def __init__(self, tools: Optional[List[Tool]] = None):
        self.tools = list(tools or [])
        self.capabilities: Optional[Capabilities] = Capabilities(protocol_version="2024-11-05", tools=True)
        self.init_error: Optional[BaseException] = None
        self.list_error: Optional[BaseException] = None
        self.call_error: Optional[BaseException] = None
        self.init_delay = 0.0
        self.call_gate: Optional[asyncio.Event] = None
        self.result: ToolResult = ToolResult(content=[TextContent(text="Sunny, 21C")])

        self.init_calls: List[str] = []
        self.list_calls: List[str] = []
        self.calls: List[Dict[str, Any]] = []
        self.released: List[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def initialize(self, server_url: str) -> Optional[Capabilities]:
        self.init_calls.append(server_url)
        if self.init_delay:
            await asyncio.sleep(self.init_delay)
        if self.init_error:
            raise self.init_error
        return self.capabilities

    async def list_tools(self, server_url: str, cursor: Optional[str] = None) -> List[Tool]:
        self.list_calls.append(server_url)
        if self.list_error:
            raise self.list_error
        return self.tools

    async def call_tool(self, server_url, tool_name, arguments, meta=None) -> ToolResult:
        self.calls.append({"server_url": server_url, "tool": tool_name, "arguments": dict(arguments)})
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.call_gate is not None:
                await self.call_gate.wait()
            else:
                await asyncio.sleep(0)
            if self.call_error:
                raise self.call_error
            return self.result
        finally:
            self.in_flight -= 1

    async def read_resource(self, server_url: str, uri: str, mode: str = "inline") -> Optional[Resource]:
        return None

    async def release(self, server_url: str) -> None:
        self.released.append(server_url)


class ScriptedDelegate(GenerativeTextDelegate):
    """Answers from a queue; Exception items are raised instead."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.prompts: List[str] = []
        self.histories: List[list] = []
        self.gate: Optional[asyncio.Event] = None

    def push(self, *responses):
        self.responses.extend(responses)

    async def _next(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.gate is not None:
            await self.gate.wait()
        if not self.responses:
            return "I'm not sure."
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    async def generate_response(self, prompt: str, model_type: ModelType = ModelType.DEFAULT) -> str:
        self.histories.append([])
        return await self._next(prompt)

    async def generate_response_with_history(self, prompt, model_type=ModelType.DEFAULT, history=None) -> str:
        self.histories.append(list(history or []))
        return await self._next(prompt)


def forecast_tool() -> Tool:
    return Tool(
        name="get_forecast",
        title="Weather Forecast",
        description="Forecast for a city",
        input_schema={
            "type": "object",
            "properties": {
                "city": {"type": "string", "description": "City name"},
                "days": {"type": "integer", "default": 3},
            },
            "required": ["city"],
        },
    )


def alerts_tool() -> Tool:
    return Tool(
        name="get_alerts",
        title="Weather Alerts",
        description="Active alerts",
        input_schema={
            "type": "object",
            "properties": {"region": {"type": "string"}},
            "required": [],
        },
    )


def two_param_tool() -> Tool:
    return Tool(
        name="book",
        description="Book something",
        input_schema={
            "type": "object",
            "properties": {"a": {"type": "string"}, "b": {"type": "string"}},
            "required": ["a", "b"],
        },
    )


@pytest.fixture
def protocol():
    return FakeProtocolClient([forecast_tool(), alerts_tool(), two_param_tool()])


@pytest.fixture
def delegate():
    return ScriptedDelegate()


@pytest.fixture
def host(protocol, delegate):
    directory = AppDirectory([
        DirectoryEntry(id="weather-app", name="Weather", server_url=WEATHER_URL, description="Forecasts"),
    ])
    return AppHost(protocol, delegate, directory=directory, tool_logger=ToolLogger())


@pytest.fixture
def recorded(host):
    seen = []
    host.events.subscribe(seen.append)
    return seen


def run(coro):
    return asyncio.run(coro)
