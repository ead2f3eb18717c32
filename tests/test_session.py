from conftest import WEATHER_URL, forecast_tool, run

from apphost.events import NeedsPillsRefresh
from apphost.session import CollectionPhase, InvokedToolState, Session


def connect_two(host):
    async def scenario():
        await host.registry.connect("weather-app", WEATHER_URL)
        await host.registry.connect("other-app", "https://other.example.com")

    run(scenario())


def test_null_context_cascades(host):
    connect_two(host)
    host.context.set_context("weather-app")
    state = host.collection.start("weather-app", forecast_tool(), ["city"])
    host.session.last_invocation = InvokedToolState("weather-app", forecast_tool(), {}, "ok")

    host.context.set_context(None)

    assert host.context.get_context() is None
    assert not host.context.is_active()
    assert host.session.active_collection is None
    assert host.session.last_invocation is None
    assert state.phase == CollectionPhase.ABORTED


def test_context_refuses_unconnected_app(host):
    assert host.context.set_context("ghost") is False
    assert host.context.get_context() is None


def test_enter_publishes_pills_refresh(host, recorded):
    connect_two(host)

    assert host.context.enter("weather-app")
    assert recorded[-1] == NeedsPillsRefresh(app_id="weather-app")


def test_switching_app_drops_other_collection(host):
    connect_two(host)
    host.context.set_context("weather-app")
    host.collection.start("weather-app", forecast_tool(), ["city"])

    host.context.set_context("other-app")

    assert host.session.active_collection is None
    assert host.context.get_context() == "other-app"


def test_clear_for_non_current_app_drops_its_state(host):
    connect_two(host)
    host.context.set_context("other-app")
    host.session.last_invocation = InvokedToolState("weather-app", forecast_tool(), {}, "ok")

    host.context.clear_for_app("weather-app")

    assert host.session.last_invocation is None
    assert host.context.get_context() == "other-app"


def test_clear_state(host):
    connect_two(host)
    host.context.set_context("weather-app")
    host.collection.start("weather-app", forecast_tool(), ["city"])

    host.context.clear_state()

    assert host.session.snapshot()["current_app_id"] is None
    assert host.session.snapshot()["collecting"] is None


def test_sessions_are_independent():
    first, second = Session(), Session()
    first.current_app_id = "weather-app"

    assert second.current_app_id is None
    assert first.session_id != second.session_id
    assert first.invocation_lock("a") is first.invocation_lock("a")
    assert first.invocation_lock("a") is not second.invocation_lock("a")


def test_disconnect_forgets_idle_invocation_lock(host):
    async def scenario():
        await host.registry.connect("weather-app", WEATHER_URL)
        await host.controller.invoke("weather-app", "get_alerts", {})
        held = "weather-app" in host.session._invocation_locks
        await host.registry.disconnect("weather-app")
        return held

    assert run(scenario()) is True
    assert "weather-app" not in host.session._invocation_locks


def test_held_invocation_lock_is_kept():
    session = Session()

    async def scenario():
        async with session.invocation_lock("weather-app"):
            session.discard_invocation_lock("weather-app")
            return "weather-app" in session._invocation_locks

    assert run(scenario()) is True
