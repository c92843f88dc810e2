"""Ordered publish/subscribe registry for the request pipeline.

Resources and cross-cutting concerns (access tokens, short URL lookups) are
all listeners. The dispatcher publishes ``<resource>.<method>.pre`` and
``<resource>.<method>.post`` around each resource operation, and the event
manager calls every subscriber in priority order.

Flow Diagram — publish()
========================
::
    ┌─────────────┐
    │  publish(   │
    │  name, evt) │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Subscribers │
    │ by priority │
    │ (desc,stable)│
    └──────┬──────┘
           ▼
    ┌─────────────┐     raises      ┌─────────────┐
    │ await       │ ──────────────▶ │ abort, error│
    │ handle(evt) │                 │ surfaces    │
    └──────┬──────┘                 └─────────────┘
           │ returns STOP?
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌─────────┐
│ next    │  │ stopped │
│listener │  │ result  │
└─────────┘  └─────────┘

How to Use
===========
**Step 1 — Write a listener**::
    class Audit(Listener):
        def get_subscribed_events(self) -> dict[str, int]:
            return {"shorturl.delete.post": 0}

        async def handle(self, event: Event) -> None:
            logger.info("deleted %s", event.request.route["shortUrlId"])

**Step 2 — Register once at startup**::
    manager = EventManager()
    manager.add_listener(Audit())
    manager.freeze()

**Step 3 — Publish**::
    result = await manager.publish("shorturl.delete.post", event)

Key Behaviours
===============
- Higher priority runs first; equal priorities keep registration order.
- Listeners run one at a time, each awaited before the next.
- A raised error stops propagation and reaches the caller untouched.
- A listener returning Propagation.STOP ends dispatch without failing.
- The registry is frozen after startup; later subscriptions are rejected.
"""

import itertools
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

from mediavault.enums import Propagation
from mediavault.exceptions import ConfigurationError, MediaVaultError

if TYPE_CHECKING:
    from mediavault.access_control import AccessControlAdapter
    from mediavault.adapters import DatabaseAdapter
    from mediavault.config import Settings
    from mediavault.http import Request, Response

__all__ = ["Event", "EventManager", "Listener", "PublishResult"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Event:
    """Everything a listener needs to act, passed explicitly per firing."""

    name: str
    request: "Request"
    response: "Response"
    config: "Settings"
    access_control: "AccessControlAdapter"
    database: "DatabaseAdapter"

    def renamed(self, name: str) -> "Event":
        return replace(self, name=name)


class Listener(ABC):
    """Capability ``handle(event)`` plus the events and priorities it wants."""

    @abstractmethod
    def get_subscribed_events(self) -> dict[str, int]:
        """Map of event name to priority."""

    @abstractmethod
    async def handle(self, event: Event) -> Propagation | Any:
        """React to ``event``. Return ``Propagation.STOP`` to end dispatch."""


@dataclass(frozen=True)
class PublishResult:
    listeners_called: int
    stopped: bool = False


@dataclass(order=True)
class _Subscription:
    sort_key: tuple[int, int]
    listener: Listener = field(compare=False)


class EventManager:
    def __init__(self) -> None:
        self._subscriptions: dict[str, list[_Subscription]] = {}
        self._sequence = itertools.count()
        self._frozen = False

    def subscribe(self, event_name: str, listener: Listener, priority: int = 0) -> None:
        assert event_name, "event_name must be non-empty"
        if self._frozen:
            raise ConfigurationError(f"Cannot subscribe to {event_name!r} after startup")
        if not isinstance(listener, Listener):
            raise ConfigurationError(f"Invalid listener for {event_name!r}: {type(listener).__name__}")

        subscriptions = self._subscriptions.setdefault(event_name, [])
        subscriptions.append(_Subscription((-priority, next(self._sequence)), listener))
        subscriptions.sort()

    def add_listener(self, listener: Listener) -> None:
        for event_name, priority in listener.get_subscribed_events().items():
            self.subscribe(event_name, listener, priority)

    def freeze(self) -> None:
        self._frozen = True

    def has_listeners(self, event_name: str) -> bool:
        return bool(self._subscriptions.get(event_name))

    def listeners(self, event_name: str) -> list[Listener]:
        return [subscription.listener for subscription in self._subscriptions.get(event_name, [])]

    async def publish(self, event_name: str, event: Event) -> PublishResult:
        if event.name != event_name:
            event = event.renamed(event_name)

        called = 0
        for listener in self.listeners(event_name):
            called += 1
            try:
                outcome = await listener.handle(event)
            except MediaVaultError as exc:
                logger.debug("Listener %s aborted %s: %s", type(listener).__name__, event_name, exc.message)
                raise
            except Exception:
                logger.exception("Listener %s failed on %s", type(listener).__name__, event_name)
                raise

            if outcome is Propagation.STOP:
                logger.debug("Listener %s stopped propagation of %s", type(listener).__name__, event_name)
                return PublishResult(listeners_called=called, stopped=True)

        return PublishResult(listeners_called=called)
