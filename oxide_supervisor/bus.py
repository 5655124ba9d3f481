"""
Local Object Bus
================

In-process, name-addressed object bus. Objects are exported at a path and
expose method calls and property get/set; events are broadcast to
subscribers.

For a real deployment this sits in front of the system message bus; the
supervisor only depends on the interface below.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Protocol

from oxide_supervisor.errors import BusError
from oxide_supervisor.models.events import Event, EventType

logger = logging.getLogger(__name__)

EventCallback = Callable[[Event], None]


class BusObject(Protocol):
    """Anything that can be exported on the bus."""

    def call(self, method: str, *args: Any) -> Any: ...

    def get(self, prop: str) -> Any: ...

    def set(self, prop: str, value: Any) -> None: ...


class LocalBus:
    """
    In-process object bus.

    Features:
    - Path-addressed objects with method/property dispatch
    - Per-event-type and catch-all subscriptions
    - At-most-once delivery, no replay
    """

    def __init__(self) -> None:
        self._objects: Dict[str, BusObject] = {}
        self._subscribers: Dict[Optional[EventType], List[EventCallback]] = {}
        self._emitted = 0

    # ─────────────────────────────────────────────────────────────────
    # Objects
    # ─────────────────────────────────────────────────────────────────

    def export(self, path: str, obj: BusObject) -> bool:
        """Export an object. Returns False if the path is taken by another object."""
        existing = self._objects.get(path)
        if existing is not None and existing is not obj:
            logger.warning(f"Object path already exported: {path}")
            return False
        self._objects[path] = obj
        logger.debug(f"Exported {path}")
        return True

    def unexport(self, path: str) -> bool:
        if self._objects.pop(path, None) is None:
            return False
        logger.debug(f"Unexported {path}")
        return True

    def is_exported(self, path: str) -> bool:
        return path in self._objects

    def paths(self) -> List[str]:
        return sorted(self._objects)

    def call(self, path: str, method: str, *args: Any) -> Any:
        return self._lookup(path).call(method, *args)

    def get(self, path: str, prop: str) -> Any:
        return self._lookup(path).get(prop)

    def set(self, path: str, prop: str, value: Any) -> None:
        self._lookup(path).set(prop, value)

    def _lookup(self, path: str) -> BusObject:
        obj = self._objects.get(path)
        if obj is None:
            raise BusError(f"No object at path {path}")
        return obj

    # ─────────────────────────────────────────────────────────────────
    # Events
    # ─────────────────────────────────────────────────────────────────

    def subscribe(self, callback: EventCallback, event_type: Optional[EventType] = None) -> None:
        """Subscribe to one event type, or to all events when event_type is None."""
        self._subscribers.setdefault(event_type, []).append(callback)

    def unsubscribe(self, callback: EventCallback, event_type: Optional[EventType] = None) -> bool:
        callbacks = self._subscribers.get(event_type, [])
        if callback in callbacks:
            callbacks.remove(callback)
            return True
        return False

    def emit(self, event: Event) -> None:
        """Deliver an event once to every matching subscriber."""
        self._emitted += 1
        logger.debug(f"Event {event.type.value} {event.args}")
        targets = list(self._subscribers.get(event.type, [])) + list(self._subscribers.get(None, []))
        for callback in targets:
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Event subscriber {callback!r} failed on {event.type.value}: {e}")

    def get_stats(self) -> Dict[str, Any]:
        return {
            "exported_objects": len(self._objects),
            "subscribers": sum(len(v) for v in self._subscribers.values()),
            "events_emitted": self._emitted,
        }
