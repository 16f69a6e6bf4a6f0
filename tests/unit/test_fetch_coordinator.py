# =============================================================================
# tests/unit/test_fetch_coordinator.py
# Unit Tests for FetchCoordinator
# =============================================================================

import asyncio
from dataclasses import replace
from unittest.mock import MagicMock

import pytest

from sync_core.errors import ErrorKind, TransportError, UnauthenticatedError
from sync_core.sync import FetchCoordinator, FetchStatus, ResourceCache


@pytest.fixture
def cache(clock):
    return ResourceCache(clock=clock)


@pytest.fixture
def monitor():
    mock_monitor = MagicMock()
    mock_monitor.is_reachable = True
    return mock_monitor


@pytest.fixture
def coordinator(cache, config, monitor, clock):
    return FetchCoordinator(cache, config, monitor=monitor, clock=clock)


def returning(value, calls=None):
    async def fetch(token):
        if calls is not None:
            calls.append(token)
        return value
    return fetch


def blocking(gate: asyncio.Event, value):
    async def fetch(token):
        await gate.wait()
        return value
    return fetch


class TestFetchCoordinatorShortCircuits:
    """Fresh cache, in-flight and throttle checks"""

    @pytest.mark.asyncio
    async def test_fresh_cache_skips_fetch(self, coordinator, cache):
        cache.set("dashboard:stats", {"total": 1})
        calls = []

        outcome = await coordinator.run("dashboard:stats", returning({}, calls), ttl=30)

        assert outcome.status is FetchStatus.FRESH
        assert outcome.value == {"total": 1}
        assert calls == []

    @pytest.mark.asyncio
    async def test_concurrent_run_joins_in_flight(self, coordinator):
        gate = asyncio.Event()
        first = asyncio.ensure_future(coordinator.run("clients:list", blocking(gate, ["a"])))
        await asyncio.sleep(0)

        calls = []
        second = await coordinator.run("clients:list", returning(["b"], calls))

        assert second.status is FetchStatus.IN_FLIGHT
        assert calls == []
        assert coordinator.is_in_flight("clients:list")

        gate.set()
        assert (await first).status is FetchStatus.OK
        assert not coordinator.is_in_flight("clients:list")

    @pytest.mark.asyncio
    async def test_throttle_window(self, coordinator, clock):
        assert (await coordinator.run("k", returning(1))).status is FetchStatus.OK

        clock.advance(0.5)
        assert (await coordinator.run("k", returning(2))).status is FetchStatus.THROTTLED

        clock.advance(0.6)
        outcome = await coordinator.run("k", returning(3))
        assert outcome.status is FetchStatus.OK
        assert outcome.value == 3

    @pytest.mark.asyncio
    async def test_force_bypasses_throttle(self, coordinator, clock):
        await coordinator.run("k", returning(1))
        clock.advance(0.1)

        outcome = await coordinator.run("k", returning(2), force=True)
        assert outcome.status is FetchStatus.OK

    @pytest.mark.asyncio
    async def test_reset_throttle(self, coordinator):
        await coordinator.run("k", returning(1))
        coordinator.reset_throttle("k")
        assert (await coordinator.run("k", returning(2))).status is FetchStatus.OK


class TestFetchCoordinatorResults:
    """Success, failure and stale fallback"""

    @pytest.mark.asyncio
    async def test_success_writes_cache_and_reports(self, coordinator, cache, monitor):
        outcome = await coordinator.run("k", returning([1, 2]))

        assert outcome.fetched
        assert cache.get("k").value == [1, 2]
        monitor.report_success.assert_called_once()

    @pytest.mark.asyncio
    async def test_failure_keeps_stale_value(self, coordinator, cache, clock, monitor):
        cache.set("clients:list", ["old"])
        clock.advance(120)

        async def failing(token):
            raise TransportError("connection reset")

        outcome = await coordinator.run("clients:list", failing, ttl=60)

        assert outcome.status is FetchStatus.FAILED
        assert outcome.error.kind is ErrorKind.TRANSPORT
        assert cache.get("clients:list").value == ["old"]
        assert coordinator.last_error("clients:list").message == "connection reset"
        monitor.report_failure.assert_called_once()

    @pytest.mark.asyncio
    async def test_success_clears_previous_error(self, coordinator, clock):
        async def failing(token):
            raise ConnectionError("down")

        await coordinator.run("k", failing)
        assert coordinator.last_error("k") is not None

        clock.advance(2)
        await coordinator.run("k", returning(1))
        assert coordinator.last_error("k") is None

    @pytest.mark.asyncio
    async def test_timeout_is_bounded(self, cache, config, monitor, clock):
        coordinator = FetchCoordinator(cache, replace(config, fetch_timeout=0.05), monitor=monitor, clock=clock)

        outcome = await coordinator.run("k", blocking(asyncio.Event(), "never"))

        assert outcome.status is FetchStatus.FAILED
        assert outcome.error.kind is ErrorKind.TIMEOUT
        assert not coordinator.is_in_flight("k")
        assert "k" not in cache
        monitor.report_failure.assert_called_once()

    @pytest.mark.asyncio
    async def test_timeout_runs_abort_hooks(self, cache, config, monitor, clock):
        coordinator = FetchCoordinator(cache, replace(config, fetch_timeout=0.05), monitor=monitor, clock=clock)
        aborted = []

        async def fetch(token):
            token.on_cancel(lambda: aborted.append(token.generation))
            await asyncio.Event().wait()

        outcome = await coordinator.run("k", fetch)

        assert outcome.status is FetchStatus.FAILED
        assert outcome.error.kind is ErrorKind.TIMEOUT
        assert len(aborted) == 1

    @pytest.mark.asyncio
    async def test_unauthenticated_is_not_a_connection_failure(self, coordinator, monitor):
        async def rejected(token):
            raise UnauthenticatedError("JWT expired")

        outcome = await coordinator.run("k", rejected)

        assert outcome.error.kind is ErrorKind.UNAUTHENTICATED
        monitor.report_unauthenticated.assert_called_once()
        monitor.report_failure.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_errors_are_classified(self, coordinator):
        async def broken(token):
            raise KeyError("id")

        outcome = await coordinator.run("k", broken)
        assert outcome.error.kind is ErrorKind.UNKNOWN


class TestFetchCoordinatorOffline:
    """Reachability gate"""

    @pytest.mark.asyncio
    async def test_unreachable_backend_skips_fetch(self, coordinator, monitor):
        monitor.is_reachable = False
        calls = []

        outcome = await coordinator.run("k", returning(1, calls))

        assert outcome.status is FetchStatus.OFFLINE
        assert calls == []
        assert coordinator.last_error("k").code == "SYNC_005"

    @pytest.mark.asyncio
    async def test_forced_fetch_runs_while_unreachable(self, coordinator, monitor):
        monitor.is_reachable = False
        outcome = await coordinator.run("k", returning(1), force=True)
        assert outcome.status is FetchStatus.OK


class TestFetchCoordinatorCancellation:
    """Superseded fetches never write into the cache"""

    @pytest.mark.asyncio
    async def test_forced_run_supersedes_in_flight(self, coordinator, cache):
        slow_gate = asyncio.Event()
        slow = asyncio.ensure_future(coordinator.run("k", blocking(slow_gate, "old")))
        await asyncio.sleep(0)
        first_token = coordinator.current_token("k")

        fast = await coordinator.run("k", returning("new"), force=True)
        assert fast.status is FetchStatus.OK
        assert first_token.cancelled

        slow_gate.set()
        late = await slow

        assert late.status is FetchStatus.CANCELLED
        assert cache.get("k").value == "new"

    @pytest.mark.asyncio
    async def test_cancel_discards_result(self, coordinator, cache):
        gate = asyncio.Event()
        aborted = []
        started = asyncio.Event()

        async def fetch(token):
            token.on_cancel(lambda: aborted.append(token.generation))
            started.set()
            await gate.wait()
            return "late"

        task = asyncio.ensure_future(coordinator.run("k", fetch))
        await started.wait()

        assert coordinator.cancel("k")
        assert not coordinator.is_in_flight("k")
        gate.set()

        assert (await task).status is FetchStatus.CANCELLED
        assert "k" not in cache
        assert len(aborted) == 1

    @pytest.mark.asyncio
    async def test_cancel_all(self, coordinator):
        gates = [asyncio.Event(), asyncio.Event()]
        tasks = [
            asyncio.ensure_future(coordinator.run(f"k{i}", blocking(gate, i)))
            for i, gate in enumerate(gates)
        ]
        await asyncio.sleep(0)

        assert coordinator.cancel_all() == 2
        for gate in gates:
            gate.set()
        outcomes = await asyncio.gather(*tasks)
        assert all(o.status is FetchStatus.CANCELLED for o in outcomes)

    @pytest.mark.asyncio
    async def test_cancel_does_not_throttle_next_run(self, coordinator):
        gate = asyncio.Event()
        task = asyncio.ensure_future(coordinator.run("k", blocking(gate, "first")))
        await asyncio.sleep(0)
        coordinator.cancel("k")

        outcome = await coordinator.run("k", returning("second"))

        assert outcome.status is FetchStatus.OK
        gate.set()
        assert (await task).status is FetchStatus.CANCELLED

    def test_cancel_without_fetch(self, coordinator):
        assert not coordinator.cancel("nothing")

    @pytest.mark.asyncio
    async def test_listeners_see_state_changes(self, coordinator):
        seen = []
        remove = coordinator.add_listener(seen.append)

        await coordinator.run("k", returning(1))
        remove()
        await coordinator.run("other", returning(1))

        assert seen == ["k", "k"]
