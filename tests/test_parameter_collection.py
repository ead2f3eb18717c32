import asyncio

import pytest

from conftest import WEATHER_URL, run, two_param_tool

from apphost import events
from apphost.exceptions import ParameterExtractionParseFailure
from apphost.models import Tool
from apphost.parameter_collection import (
    NO_ACTIVE_COLLECTION,
    NO_REMAINING_PARAMETERS,
    build_extraction_prompt,
    parse_tool_params,
    strip_marker,
)
from apphost.session import ParameterCollectionState


async def start_booking(host):
    await host.registry.connect("weather-app", WEATHER_URL)
    await host.controller.invoke("weather-app", "book")


def test_partial_then_complete_extraction(host, protocol, delegate):
    delegate.push('TOOL_PARAMS: {"a": "x"}\nGreat, and what about b?')
    delegate.push('TOOL_PARAMS: {"b": "y"}')

    async def scenario():
        await start_booking(host)
        first = await host.collection.continue_turn("a is x")
        state = host.session.active_collection
        snapshot = (first, state is not None, dict(state.collected_params), len(protocol.calls))
        second = await host.collection.continue_turn("b is y")
        third = await host.collection.continue_turn("anything else")
        return snapshot, second, third

    (first, collecting, collected, calls_after_first), second, third = run(scenario())

    assert first == "Great, and what about b?"
    assert collecting
    assert collected == {"a": "x"}
    assert calls_after_first == 0

    assert second == ""
    assert protocol.calls == [{"server_url": WEATHER_URL, "tool": "book", "arguments": {"a": "x", "b": "y"}}]
    assert host.session.active_collection is None
    assert third == NO_ACTIVE_COLLECTION


def test_one_turn_can_fill_every_parameter(host, protocol, delegate, recorded):
    delegate.push('Got it! TOOL_PARAMS: {"a": "1", "b": "2"}')

    async def scenario():
        await start_booking(host)
        return await host.collection.continue_turn("a=1 and b=2")

    assert run(scenario()) == ""
    assert protocol.calls[0]["arguments"] == {"a": "1", "b": "2"}
    assert isinstance(recorded[-1], events.NeedsPillsRefresh)


def test_invalid_json_is_shown_unmodified(host, protocol, delegate):
    reply = 'TOOL_PARAMS: {"a": x}  which one did you mean?'
    delegate.push(reply)

    async def scenario():
        await start_booking(host)
        return await host.collection.continue_turn("hmm")

    assert run(scenario()) == reply
    assert host.session.active_collection.collected_params == {}
    assert protocol.calls == []


def test_value_of_wrong_type_is_kept_as_text(host, protocol, delegate):
    protocol.tools.append(Tool(
        name="order",
        input_schema={
            "properties": {"item": {"type": "string"}, "qty": {"type": "integer"}},
            "required": ["item", "qty"],
        },
    ))
    delegate.push('TOOL_PARAMS: {"item": "pizza", "qty": "a couple"}')

    async def scenario():
        await host.registry.connect("weather-app", WEATHER_URL)
        await host.controller.invoke("weather-app", "order")
        return await host.collection.continue_turn("a couple of pizzas")

    assert run(scenario()) == ""
    assert protocol.calls[0]["arguments"] == {"item": "pizza", "qty": "a couple"}
    assert host.session.active_collection is None


def test_concurrent_turns_execute_once(host, protocol, delegate):
    delegate.push('TOOL_PARAMS: {"a": "x", "b": "y"}', 'TOOL_PARAMS: {"a": "z", "b": "w"}')

    async def scenario():
        await start_booking(host)
        return await asyncio.gather(
            host.collection.continue_turn("1"),
            host.collection.continue_turn("2"),
        )

    first, second = run(scenario())

    assert first == ""
    assert second == NO_ACTIVE_COLLECTION
    assert len(protocol.calls) == 1
    assert protocol.calls[0]["arguments"] == {"a": "x", "b": "y"}
    assert len(delegate.prompts) == 1


def test_typed_values_are_coerced(host, protocol, delegate):
    protocol.tools.append(Tool(
        name="count",
        input_schema={"properties": {"n": {"type": "integer"}}, "required": ["n"]},
    ))
    delegate.push('TOOL_PARAMS: {"n": "5"}')

    async def scenario():
        await host.registry.connect("weather-app", WEATHER_URL)
        await host.controller.invoke("weather-app", "count")
        return await host.collection.continue_turn("five")

    assert run(scenario()) == ""
    assert protocol.calls[0]["arguments"] == {"n": 5}


def test_reply_without_marker_keeps_collecting(host, delegate):
    delegate.push("Which city do you mean?")

    async def scenario():
        await start_booking(host)
        return await host.collection.continue_turn("somewhere warm")

    assert run(scenario()) == "Which city do you mean?"
    state = host.session.active_collection
    assert state.turn_history == [("user", "somewhere warm"), ("assistant", "Which city do you mean?")]


def test_marker_only_reply_asks_for_rest(host, delegate):
    delegate.push('TOOL_PARAMS: {"a": "x"}')

    async def scenario():
        await start_booking(host)
        return await host.collection.continue_turn("a is x")

    assert run(scenario()) == "Thanks! I still need: b"


def test_delegate_error_keeps_collection(host, delegate, protocol):
    delegate.push(RuntimeError("model offline"))

    async def scenario():
        await start_booking(host)
        return await host.collection.continue_turn("a is x")

    assert run(scenario()) == "Sorry, I encountered an error: model offline"
    assert host.session.active_collection is not None
    assert protocol.calls == []


def test_context_cleared_while_model_answers(host, delegate, protocol):
    delegate.push('TOOL_PARAMS: {"a": "x", "b": "y"}')

    async def scenario():
        delegate.gate = asyncio.Event()
        await start_booking(host)
        turn = asyncio.create_task(host.collection.continue_turn("x and y"))
        await asyncio.sleep(0)
        host.context.set_context(None)
        delegate.gate.set()
        return await turn

    assert run(scenario()) == NO_ACTIVE_COLLECTION
    assert protocol.calls == []


def test_failed_execution_reports_cause(host, delegate, protocol):
    protocol.call_error = RuntimeError("booking closed")
    delegate.push('TOOL_PARAMS: {"a": "x", "b": "y"}')

    async def scenario():
        await start_booking(host)
        return await host.collection.continue_turn("x and y")

    assert run(scenario()) == "Tool failed: booking closed"
    assert host.session.active_collection is None


def test_turn_without_collection(host):
    assert run(host.collection.continue_turn("hello")) == NO_ACTIVE_COLLECTION


def test_turn_with_nothing_remaining(host):
    async def scenario():
        await start_booking(host)
        host.session.active_collection.collected_params.update({"a": "1", "b": "2"})
        return await host.collection.continue_turn("hello")

    assert run(scenario()) == NO_REMAINING_PARAMETERS


def test_start_replaces_existing_collection(host):
    async def scenario():
        await start_booking(host)
        await host.controller.invoke("weather-app", "get_forecast")

    run(scenario())

    assert host.session.active_collection.tool.name == "get_forecast"


def test_prompt_names_tool_remaining_and_message():
    state = ParameterCollectionState(
        app_id="weather-app",
        tool=Tool(name="get_forecast", title="Weather Forecast", input_schema={
            "properties": {"city": {"type": "string", "description": "City name"}, "unit": {}},
        }),
        required_params=["city", "unit"],
        collected_params={"unit": "celsius"},
    )

    prompt = build_extraction_prompt(state, "it's Paris")

    assert '"Weather Forecast"' in prompt
    assert "- city (string): City name" in prompt
    assert "Already collected: unit=celsius" in prompt
    assert "it's Paris" in prompt
    assert 'TOOL_PARAMS: {"city": "<extracted_value>"}' in prompt


def test_parse_skips_placeholders_and_stringifies_extras():
    tool = two_param_tool()

    values = parse_tool_params(tool, 'TOOL_PARAMS: {"a": "<extracted_value>", "b": "ok", "vip": true, "n": null}')

    assert values == {"b": "ok", "vip": "true"}


def test_parse_untyped_property_values_become_text():
    tool = Tool(name="t", input_schema={"properties": {"qty": {}}})

    assert parse_tool_params(tool, 'TOOL_PARAMS: {"qty": 3}') == {"qty": "3"}


def test_parse_rejects_non_object_payload():
    with pytest.raises(ParameterExtractionParseFailure):
        parse_tool_params(two_param_tool(), "TOOL_PARAMS: nothing here")


def test_strip_marker_keeps_conversation():
    assert strip_marker('Sure thing.\nTOOL_PARAMS: {"a": "x"}\n') == "Sure thing."
    assert strip_marker("TOOL_PARAMS: incomplete") == ""


def test_strip_marker_leaves_later_braces():
    reply = 'TOOL_PARAMS: {"a": "x"}\nWhich date? Use {YYYY-MM-DD}.'

    assert strip_marker(reply) == "Which date? Use {YYYY-MM-DD}."
    assert strip_marker('Got it.\nTOOL_PARAMS:\n{"a": "x",\n "b": "y"}') == "Got it."


def test_parse_mismatched_value_becomes_text():
    values = parse_tool_params(two_param_tool(), 'TOOL_PARAMS: {"a": "x", "b": true}\nAnything else? {maybe}')

    assert values == {"a": "x", "b": "true"}
