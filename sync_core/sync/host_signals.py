# =============================================================================
# sync_core/sync/host_signals.py
# Host Environment Signals (online/offline, visibility)
# =============================================================================
"""
HostSignals - the seam between the embedding host and the sync layer.

A browser shell, desktop wrapper or test drives this object; the
ConnectionMonitor subscribes to it and unsubscribes on dispose.

Usage:
    signals = HostSignals()
    monitor.attach(signals)
    signals.offline()                  # network gone
    signals.visibility_changed(True)   # tab visible again
"""

from __future__ import annotations
from enum import Enum
from typing import Callable, Dict, List
import logging

from .subscription import Subscription

logger = logging.getLogger(__name__)


class HostEvent(Enum):
    """Platform events the sync layer reacts to."""
    ONLINE = "online"
    OFFLINE = "offline"
    VISIBLE = "visible"
    HIDDEN = "hidden"


class HostSignals:
    """Explicit subscription list for host events."""

    def __init__(self):
        self._listeners: Dict[HostEvent, List[Callable[[], None]]] = {
            event: [] for event in HostEvent
        }
        self.visible = True

    def subscribe(self, event: HostEvent, callback: Callable[[], None]) -> Subscription:
        """
        Register a callback for one host event.

        Returns:
            Subscription whose cancel() removes the callback
        """
        listeners = self._listeners[event]
        listeners.append(callback)

        def _remove() -> None:
            if callback in listeners:
                listeners.remove(callback)

        return Subscription(_remove)

    def listener_count(self, event: HostEvent) -> int:
        return len(self._listeners[event])

    def emit(self, event: HostEvent) -> None:
        """Deliver an event to every current listener."""
        for callback in list(self._listeners[event]):
            try:
                callback()
            except Exception as e:
                logger.error(f"Error in host signal callback for {event.value}: {e}")

    def online(self) -> None:
        self.emit(HostEvent.ONLINE)

    def offline(self) -> None:
        self.emit(HostEvent.OFFLINE)

    def visibility_changed(self, visible: bool) -> None:
        if visible == self.visible:
            return
        self.visible = visible
        self.emit(HostEvent.VISIBLE if visible else HostEvent.HIDDEN)
