# =============================================================================
# tests/conftest.py
# Pytest Configuration and Fixtures
# =============================================================================

import pytest
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, List
from unittest.mock import MagicMock

from sync_core.config import SyncConfig


# =============================================================================
# TIME FIXTURES
# =============================================================================

class FakeClock:
    """Monotonic clock the test advances by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


class FakeTimer:
    def __init__(self, scheduler, due: float, delay: float, callback: Callable[[], None]):
        self._scheduler = scheduler
        self.due = due
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """
    Stand-in for ``loop.call_later`` driven by a FakeClock.

    ``delays`` records every requested delay in order; ``fire_next()`` moves
    the clock to the earliest live timer and runs it.
    """

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.timers: List[FakeTimer] = []
        self.delays: List[float] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(self, self.clock() + delay, delay, callback)
        self.timers.append(timer)
        self.delays.append(delay)
        return timer

    def pending(self) -> List[FakeTimer]:
        return sorted((t for t in self.timers if not t.cancelled), key=lambda t: t.due)

    def fire_next(self) -> FakeTimer:
        timer = self.pending()[0]
        self.timers.remove(timer)
        if timer.due > self.clock.now:
            self.clock.now = timer.due
        timer.callback()
        return timer


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler(clock):
    return FakeScheduler(clock)


@pytest.fixture
def config():
    """Defaults, stated explicitly so tests read on their own."""
    return SyncConfig(
        ping_interval=30.0,
        initial_probe_delay=5.0,
        probe_timeout=5.0,
        reconnect_base_delay=2.0,
        max_reconnect_attempts=5,
        reconnect_kickoff_delay=1.0,
        throttle_window=1.0,
        fetch_timeout=6.0,
        dashboard_ttl=30.0,
        list_ttl=60.0,
    )


# =============================================================================
# BACKEND FIXTURES
# =============================================================================

class ScriptedProbe:
    """Async probe whose outcome the test switches between calls."""

    def __init__(self):
        self.calls = 0
        self.error: Any = None

    async def __call__(self) -> bool:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return True

    def fail_with(self, error: BaseException) -> None:
        self.error = error

    def succeed(self) -> None:
        self.error = None


@pytest.fixture
def probe():
    return ScriptedProbe()


@pytest.fixture
def mock_supabase():
    """Mock Supabase client"""
    mock_client = MagicMock()
    mock_client.table.return_value.select.return_value.execute.return_value.data = []
    mock_client.table.return_value.insert.return_value.execute.return_value = MagicMock()
    return mock_client


class FakeGateway:
    """
    Records every query built against a MagicMock client and answers from a
    per-table script.
    """

    def __init__(self):
        self.client = MagicMock()
        self.rows = {}
        self.rpc_results = {}
        self.rpc_errors = {}
        self.errors = {}
        self.built = []

    def _table_of(self, build) -> str:
        client = MagicMock()
        build(client)
        name = client.table.call_args[0][0]
        self.built.append(client)
        return name

    async def query(self, build, token=None):
        name = self._table_of(build)
        if name in self.errors:
            raise self.errors[name]
        return self.rows.get(name, [])

    async def query_one(self, build, token=None):
        rows = await self.query(build, token)
        if isinstance(rows, list):
            return rows[0] if rows else None
        return rows

    async def rpc(self, name, params=None, token=None):
        self.built.append(("rpc", name, params))
        if name in self.rpc_errors:
            raise self.rpc_errors[name]
        return self.rpc_results.get(name)

    async def probe(self) -> bool:
        return True


@pytest.fixture
def gateway():
    return FakeGateway()


# =============================================================================
# SAMPLE DATA FIXTURES
# =============================================================================

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def iso(delta: timedelta) -> str:
    return (NOW + delta).isoformat()


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def sample_clients():
    return [
        {"id": 1, "name": "Taqueria El Sol", "status": "active", "created_at": iso(-timedelta(minutes=5))},
        {"id": 2, "name": "Hotel Mar", "status": "active", "created_at": iso(-timedelta(days=2))},
        {"id": 3, "name": "Farmacia Luz", "status": "inactive", "created_at": iso(-timedelta(days=10))},
        {"id": 4, "name": "Gasolinera Norte", "status": "suspended", "created_at": iso(-timedelta(days=20))},
    ]


@pytest.fixture
def sample_documents():
    return [
        {"id": 10, "name": "Licencia", "status": "approved",
         "valid_until": iso(timedelta(days=10)), "created_at": iso(-timedelta(hours=3))},
        {"id": 11, "name": "Dictamen", "status": "approved",
         "valid_until": iso(timedelta(days=90)), "created_at": iso(-timedelta(days=1))},
        {"id": 12, "name": "Permiso", "status": "pending",
         "valid_until": None, "created_at": iso(-timedelta(days=4))},
        {"id": 13, "name": "Constancia", "status": "approved",
         "valid_until": iso(-timedelta(days=3)), "created_at": iso(-timedelta(days=30))},
        {"id": 14, "name": "Programa", "status": "rejected",
         "valid_until": iso(timedelta(days=20)), "created_at": iso(-timedelta(days=40))},
    ]
