"""Event manager ordering, short-circuit and failure tests."""

import pytest
from conftest import make_request

from mediavault.enums import Propagation
from mediavault.events import EventManager, Listener
from mediavault.exceptions import ConfigurationError, ResourceError


class Recorder(Listener):
    def __init__(self, label: str, calls: list[str], events: dict[str, int], outcome=None, error=None) -> None:
        self.label = label
        self.calls = calls
        self.events = events
        self.outcome = outcome
        self.error = error

    def get_subscribed_events(self) -> dict[str, int]:
        return self.events

    async def handle(self, event):
        self.calls.append(f"{self.label}:{event.name}")
        if self.error is not None:
            raise self.error
        return self.outcome


@pytest.fixture
def event(make_event):
    return make_event(make_request("http://imbo/users/christer"), name="user.get")


@pytest.mark.asyncio
async def test_publish_runs_listeners_by_descending_priority(event) -> None:
    calls: list[str] = []
    manager = EventManager()
    manager.add_listener(Recorder("low", calls, {"user.get.pre": 1}))
    manager.add_listener(Recorder("high", calls, {"user.get.pre": 100}))
    manager.add_listener(Recorder("mid", calls, {"user.get.pre": 50}))

    result = await manager.publish("user.get.pre", event)

    assert calls == ["high:user.get.pre", "mid:user.get.pre", "low:user.get.pre"]
    assert result.listeners_called == 3
    assert not result.stopped


@pytest.mark.asyncio
async def test_equal_priorities_keep_registration_order(event) -> None:
    calls: list[str] = []
    manager = EventManager()
    for label in ("first", "second", "third"):
        manager.add_listener(Recorder(label, calls, {"user.get.pre": 10}))

    await manager.publish("user.get.pre", event)

    assert [call.split(":")[0] for call in calls] == ["first", "second", "third"]


@pytest.mark.asyncio
async def test_stop_propagation_skips_remaining_listeners(event) -> None:
    calls: list[str] = []
    manager = EventManager()
    manager.add_listener(Recorder("stopper", calls, {"user.get.pre": 10}, outcome=Propagation.STOP))
    manager.add_listener(Recorder("skipped", calls, {"user.get.pre": 0}))

    result = await manager.publish("user.get.pre", event)

    assert calls == ["stopper:user.get.pre"]
    assert result.stopped
    assert result.listeners_called == 1


@pytest.mark.asyncio
async def test_failure_aborts_and_surfaces_status(event) -> None:
    calls: list[str] = []
    manager = EventManager()
    manager.add_listener(Recorder("failing", calls, {"user.get.pre": 10}, error=ResourceError("gone", 404)))
    manager.add_listener(Recorder("skipped", calls, {"user.get.pre": 0}))

    with pytest.raises(ResourceError) as exc_info:
        await manager.publish("user.get.pre", event)

    assert exc_info.value.status_code == 404
    assert calls == ["failing:user.get.pre"]


@pytest.mark.asyncio
async def test_unexpected_errors_propagate(event) -> None:
    manager = EventManager()
    manager.add_listener(Recorder("broken", [], {"user.get.pre": 0}, error=KeyError("boom")))

    with pytest.raises(KeyError):
        await manager.publish("user.get.pre", event)


@pytest.mark.asyncio
async def test_publish_without_listeners(event) -> None:
    manager = EventManager()
    result = await manager.publish("nobody.listens", event)
    assert result.listeners_called == 0
    assert not manager.has_listeners("nobody.listens")


def test_frozen_manager_rejects_subscriptions() -> None:
    manager = EventManager()
    manager.freeze()
    with pytest.raises(ConfigurationError):
        manager.add_listener(Recorder("late", [], {"user.get.pre": 0}))


def test_subscribe_rejects_non_listeners() -> None:
    manager = EventManager()
    with pytest.raises(ConfigurationError):
        manager.subscribe("user.get.pre", object())  # type: ignore[arg-type]
