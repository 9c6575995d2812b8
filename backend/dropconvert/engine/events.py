"""Explicit subscription handles for engine events."""
import logging
from typing import Any, Callable

logger = logging.getLogger("dropconvert.engine.events")

EVENT_NAMES = ("progress", "log")


class Subscription:
    """Handle returned by EventHub.subscribe. close() removes exactly this callback."""

    def __init__(self, hub: "EventHub", event: str, callback: Callable[[Any], None]):
        self._hub = hub
        self.event = event
        self.callback = callback
        self.closed = False

    def close(self) -> None:
        if self.closed:
            return
        self._hub._remove(self)
        self.closed = True

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class EventHub:
    def __init__(self):
        self._subscriptions: dict[str, list[Subscription]] = {name: [] for name in EVENT_NAMES}

    def subscribe(self, event: str, callback: Callable[[Any], None]) -> Subscription:
        if event not in self._subscriptions:
            raise ValueError(f"Unknown engine event: {event}")
        sub = Subscription(self, event, callback)
        self._subscriptions[event].append(sub)
        return sub

    def emit(self, event: str, payload: Any) -> None:
        # Copy so a callback may close its own subscription while we iterate
        for sub in list(self._subscriptions[event]):
            sub.callback(payload)

    def count(self, event: str) -> int:
        return len(self._subscriptions[event])

    def clear(self) -> None:
        for subs in self._subscriptions.values():
            for sub in list(subs):
                sub.close()
        logger.debug("All engine subscriptions closed")

    def _remove(self, sub: Subscription) -> None:
        self._subscriptions[sub.event].remove(sub)
