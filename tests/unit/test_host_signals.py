# =============================================================================
# tests/unit/test_host_signals.py
# Unit Tests for HostSignals and Subscriptions
# =============================================================================

from sync_core.sync import HostEvent, HostSignals, Subscription, SubscriptionList


class TestHostSignals:
    """Explicit event source"""

    def test_emit_to_subscribers(self):
        signals = HostSignals()
        received = []
        signals.subscribe(HostEvent.OFFLINE, lambda: received.append("offline"))

        signals.offline()
        signals.online()

        assert received == ["offline"]

    def test_cancel_is_idempotent(self):
        signals = HostSignals()
        subscription = signals.subscribe(HostEvent.ONLINE, lambda: None)

        subscription.cancel()
        subscription.cancel()

        assert subscription.cancelled
        assert signals.listener_count(HostEvent.ONLINE) == 0

    def test_visibility_changes_only(self):
        signals = HostSignals()
        received = []
        signals.subscribe(HostEvent.VISIBLE, lambda: received.append("visible"))
        signals.subscribe(HostEvent.HIDDEN, lambda: received.append("hidden"))

        signals.visibility_changed(True)
        signals.visibility_changed(False)
        signals.visibility_changed(False)
        signals.visibility_changed(True)

        assert received == ["hidden", "visible"]

    def test_callback_errors_do_not_stop_delivery(self):
        signals = HostSignals()
        received = []

        def broken():
            raise RuntimeError("listener bug")

        signals.subscribe(HostEvent.ONLINE, broken)
        signals.subscribe(HostEvent.ONLINE, lambda: received.append("online"))
        signals.online()

        assert received == ["online"]


class TestSubscriptionList:
    def test_cancel_all(self):
        cancelled = []
        subscriptions = SubscriptionList()
        subscriptions.add(Subscription(lambda: cancelled.append(1)))
        subscriptions.add(Subscription(lambda: cancelled.append(2)))

        subscriptions.cancel_all()
        subscriptions.cancel_all()

        assert cancelled == [1, 2]
        assert len(subscriptions) == 0
