# =============================================================================
# sync_core/sync/subscription.py
# Cancellation Handles for Listener Registrations
# =============================================================================

from __future__ import annotations
from typing import Callable, List, Optional


class Subscription:
    """
    Handle returned by every ``subscribe()`` in the sync layer.

    ``cancel()`` removes the listener and is safe to call more than once.
    """

    def __init__(self, on_cancel: Optional[Callable[[], None]] = None):
        self._on_cancel = on_cancel
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self._on_cancel is not None:
            self._on_cancel()
            self._on_cancel = None


class SubscriptionList:
    """Collects handles created by an owner so teardown can cancel them all."""

    def __init__(self):
        self._items: List[Subscription] = []

    def add(self, subscription: Subscription) -> Subscription:
        self._items.append(subscription)
        return subscription

    def cancel_all(self) -> None:
        items, self._items = self._items, []
        for subscription in items:
            subscription.cancel()

    def __len__(self) -> int:
        return len(self._items)
