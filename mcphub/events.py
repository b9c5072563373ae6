"""
Server lifecycle and catalog events.

The server pool publishes typed, immutable events on an EventBus. Subscribers
register for an event type and receive the event instance; they may be plain
functions or coroutine functions. A failing subscriber is logged and does not
stop delivery to the others.
"""

import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass
from typing import Any, ClassVar, Union

logger = logging.getLogger(__name__)

# Event types published by the server pool
SERVER_STATE = "server_state"
CATALOG_CHANGED = "catalog_changed"


@dataclass(frozen=True)
class ServerStateChanged:
    """A server connection moved between lifecycle states."""

    event_type: ClassVar[str] = SERVER_STATE

    server: str
    old: str
    new: str
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CatalogChanged:
    """A server's tool catalog was published or withdrawn (tools == 0)."""

    event_type: ClassVar[str] = CATALOG_CHANGED

    server: str
    tools: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


Event = Union[ServerStateChanged, CatalogChanged]
Subscriber = Callable[[Event], Union[None, Awaitable[None]]]


def _topic(event_type: Union[str, type]) -> str:
    return event_type if isinstance(event_type, str) else event_type.event_type


class EventBus:
    _subscribers: dict[str, list[Subscriber]]

    def __init__(self) -> None:
        self._subscribers = {}

    def subscribe(self, event_type: Union[str, type[Event]], callback: Subscriber) -> None:
        """Register a callback for an event type name or event class."""
        self._subscribers.setdefault(_topic(event_type), []).append(callback)

    def unsubscribe(self, event_type: Union[str, type[Event]], callback: Subscriber) -> None:
        callbacks = self._subscribers.get(_topic(event_type), [])
        if callback in callbacks:
            callbacks.remove(callback)

    def has_subscribers(self, event_type: Union[str, type[Event]]) -> bool:
        return bool(self._subscribers.get(_topic(event_type)))

    async def publish(self, event: Event) -> None:
        """Deliver an event; async subscribers are awaited in order."""
        for callback in list(self._subscribers.get(event.event_type, [])):
            try:
                if inspect.iscoroutinefunction(callback):
                    await callback(event)
                else:
                    callback(event)
            except Exception:
                logger.error(
                    "EventBus subscriber %r failed on %s for server %s",
                    callback,
                    event.event_type,
                    event.server,
                    exc_info=True,
                )
