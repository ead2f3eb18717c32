import json

from conftest import run

from apphost.router import CONTEXT_LOST, RESPOND, RoutingDecision, parse_routing_decision


def decision(**payload):
    return json.dumps(payload)


async def enter_weather(host):
    await host.connect_app("weather-app")
    return host.registry.get("weather-app")


def test_non_json_answer_becomes_a_reply(host, delegate):
    delegate.push("Honestly, just bring an umbrella.")

    async def scenario():
        app = await enter_weather(host)
        return await host.router.classify("should I worry?", app, [])

    result = run(scenario())

    assert result.action == RESPOND
    assert result.response == "Honestly, just bring an umbrella."
    assert result.parse_failed


def test_delegate_failure_is_respond_without_text(host, delegate):
    delegate.push(RuntimeError("quota"))

    async def scenario():
        app = await enter_weather(host)
        return await host.router.classify("hi", app)

    result = run(scenario())

    assert result.action == RESPOND
    assert result.response is None


def test_fenced_json_and_alias():
    raw = '```json\n{"action": "invoke_tool", "toolName": "get_alerts", "parameters": {"region": "north"}}\n```'

    result = parse_routing_decision(raw)

    assert result == RoutingDecision(action="invoke_tool", tool_name="get_alerts", parameters={"region": "north"})


def test_prompt_lists_tools(host, delegate):
    delegate.push(decision(action="respond", response="ok"))

    async def scenario():
        app = await enter_weather(host)
        await host.router.classify("hi", app)

    run(scenario())

    prompt = delegate.prompts[0]
    assert "MCP app context (Weather)" in prompt
    assert "- get_forecast [Weather Forecast]: Forecast for a city (params: city, days)" in prompt
    assert prompt.endswith("User message: hi")


def test_invoke_tool_without_required_params_runs(host, delegate, protocol):
    delegate.push(decision(action="invoke_tool", toolName="get_alerts"))

    async def scenario():
        await enter_weather(host)
        return await host.router.handle_message("any alerts?")

    assert run(scenario()) == ""
    assert [c["tool"] for c in protocol.calls] == ["get_alerts"]


def test_invoke_tool_by_title_starts_collection(host, delegate, protocol):
    delegate.push(decision(action="invoke_tool", toolName="weather forecast"))

    async def scenario():
        await enter_weather(host)
        return await host.router.handle_message("forecast please")

    assert run(scenario()) == "To run Weather Forecast, I need: city"
    assert protocol.calls == []
    assert host.session.active_collection.tool.name == "get_forecast"


def test_invoke_unknown_tool_lists_options(host, delegate):
    delegate.push(decision(action="invoke_tool", toolName="get_radar"))

    async def scenario():
        await enter_weather(host)
        return await host.router.handle_message("radar")

    reply = run(scenario())

    assert reply.startswith("I couldn't determine which tool to invoke. Available tools: ")
    assert "Weather Forecast" in reply and "Weather Alerts" in reply


def test_modify_parameters_reruns_last_invocation(host, delegate, protocol):
    delegate.push(decision(action="modify_parameters", parameters={"days": 5}))

    async def scenario():
        await enter_weather(host)
        await host.controller.invoke("weather-app", "get_forecast", {"city": "Paris", "days": 3})
        return await host.router.handle_message("make it five days")

    assert run(scenario()) == ""
    assert protocol.calls[-1]["arguments"] == {"city": "Paris", "days": 5}
    assert host.session.last_invocation.parameters == {"city": "Paris", "days": 5}


def test_modify_without_last_invocation_falls_back(host, delegate, protocol):
    delegate.push(decision(action="modify_parameters", parameters={"days": 5}, response="Run a forecast first."))

    async def scenario():
        await enter_weather(host)
        return await host.router.handle_message("make it five days")

    assert run(scenario()) == "Run a forecast first."
    assert protocol.calls == []


def test_respond_without_text_generates_contextual_reply(host, delegate):
    delegate.push(decision(action="respond"), "It's a weather app.")

    async def scenario():
        await enter_weather(host)
        return await host.router.handle_message("what is this?", [("user", "hello")])

    assert run(scenario()) == "It's a weather app."
    assert 'inside the "Weather" app' in delegate.prompts[1]
    assert delegate.histories[1] == [("user", "hello")]


def test_contextual_reply_error(host, delegate):
    delegate.push(decision(action="chit_chat"), RuntimeError("timeout talking to model"))

    async def scenario():
        await enter_weather(host)
        return await host.router.handle_message("hm")

    assert run(scenario()) == "Sorry, I encountered an error: timeout talking to model"


def test_no_context(host):
    assert run(host.router.handle_message("hello")) == CONTEXT_LOST
