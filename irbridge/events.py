"""Event emission for bridges and routers."""

import inspect
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Union

logger = logging.getLogger(__name__)


@dataclass
class Event:
    """An observable event.

    Attributes:
        type: Event name, e.g. ``request:start`` or ``backend:switch``
        request_id: Request the event belongs to
        data: Event payload
        timestamp: Emission time
    """

    type: str
    request_id: Optional[str] = None
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


Listener = Callable[[Event], Union[None, Awaitable[None]]]


class EventEmitter:
    """Dispatches events to registered listeners.

    Listeners may be plain functions or coroutines. A failing listener is
    logged and never interrupts the request that emitted the event.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = {}
        self._once: set[int] = set()

    def on(self, event_type: str, listener: Listener) -> Callable[[], None]:
        """Register a listener.

        Args:
            event_type: Event name, or ``*`` for every event
            listener: Callable receiving the Event

        Returns:
            Function that unregisters the listener
        """
        self._listeners.setdefault(event_type, []).append(listener)
        return lambda: self.off(event_type, listener)

    def once(self, event_type: str, listener: Listener) -> Callable[[], None]:
        """Register a listener that runs at most once."""
        self._once.add(id(listener))
        return self.on(event_type, listener)

    def off(self, event_type: str, listener: Listener) -> None:
        """Unregister a listener."""
        listeners = self._listeners.get(event_type, [])
        if listener in listeners:
            listeners.remove(listener)
        self._once.discard(id(listener))

    def listener_count(self, event_type: str) -> int:
        return len(self._listeners.get(event_type, []))

    async def emit(self, event: Event) -> None:
        """Notify every listener registered for the event."""
        listeners = [
            (event.type, listener) for listener in self._listeners.get(event.type, [])
        ] + [("*", listener) for listener in self._listeners.get("*", [])]
        for event_type, listener in listeners:
            if id(listener) in self._once:
                self.off(event_type, listener)
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Event listener failed for %s", event.type)
