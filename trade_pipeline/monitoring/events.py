"""
Event Bus
=========
Named lifecycle events with independent subscribers.

Delivery is best effort: a failing subscriber is logged and the remaining
subscribers still receive the event.
"""

from typing import Any, Callable, Dict, List
import logging

logger = logging.getLogger(__name__)

Listener = Callable[[Any], None]


class EventBus:
    """Callback registry keyed by event name."""

    def __init__(self):
        self._listeners: Dict[str, List[Listener]] = {}

    def on(self, event: str, callback: Listener):
        """Subscribe ``callback`` to ``event``; duplicate registrations are ignored."""
        listeners = self._listeners.setdefault(event, [])
        if callback not in listeners:
            listeners.append(callback)

    def off(self, event: str, callback: Listener):
        listeners = self._listeners.get(event, [])
        if callback in listeners:
            listeners.remove(callback)

    def emit(self, event: str, data: Any = None) -> int:
        """Deliver ``data`` to every subscriber; returns how many succeeded."""
        delivered = 0
        for callback in list(self._listeners.get(event, [])):
            try:
                callback(data)
                delivered += 1
            except Exception as e:
                logger.error(f"Event listener error ({event}): {e}")
        return delivered

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, []))
