import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

INFO = "info"
THROUGHPUT_EXCEEDED = "throughput_exceeded"
ERROR = "error"

EVENT_NAMES = (INFO, THROUGHPUT_EXCEEDED, ERROR)


@dataclass(frozen=True)
class Event:
    name: str
    message: str
    segment: Optional[int] = None
    data: Dict[str, Any] = field(default_factory=dict)


class EventBus:
    """
    Publish/subscribe channel shared by the coordinator and its scanners.

    Callbacks run synchronously on the publishing thread, so they should be
    quick (logging, counters). Subscribing to "*" receives every event.
    """

    def __init__(self):
        self._subs: Dict[str, List[Callable[[Event], None]]] = {}
        self._lock = threading.Lock()

    def subscribe(self, name: str, callback: Callable[[Event], None]):
        if name != "*" and name not in EVENT_NAMES:
            raise ValueError(f"Unknown event name: {name}")
        with self._lock:
            self._subs.setdefault(name, []).append(callback)
        return callback

    def unsubscribe(self, name: str, callback: Callable[[Event], None]):
        with self._lock:
            subs = self._subs.get(name) or []
            if callback in subs:
                subs.remove(callback)

    def publish(self, event: Event) -> None:
        with self._lock:
            targets = list(self._subs.get(event.name, [])) + list(
                self._subs.get("*", [])
            )
        for cb in targets:
            cb(event)

    def emit(
        self,
        name: str,
        message: str,
        segment: Optional[int] = None,
        **data: Any,
    ) -> Event:
        event = Event(name=name, message=message, segment=segment, data=data)
        self.publish(event)
        return event


def log_events(bus: EventBus, log) -> None:
    """Route bus traffic into a logger."""

    def _prefix(ev: Event) -> str:
        return f"[segment {ev.segment}] " if ev.segment is not None else ""

    bus.subscribe(INFO, lambda ev: log.info(f"{_prefix(ev)}{ev.message}"))
    bus.subscribe(
        THROUGHPUT_EXCEEDED,
        lambda ev: log.warning(f"{_prefix(ev)}{ev.message}"),
    )
    bus.subscribe(ERROR, lambda ev: log.error(f"{_prefix(ev)}{ev.message}"))
