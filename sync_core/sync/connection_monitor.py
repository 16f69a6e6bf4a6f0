# =============================================================================
# sync_core/sync/connection_monitor.py
# Backend Reachability Detection and Automatic Reconnection
# =============================================================================
"""
ConnectionMonitor - best-effort belief about backend reachability.

Features:
- Periodic health probes while the host is visible and connected
- Reconnection state machine with exponential backoff
- Immediate reaction to host online/offline/visibility signals
- Event callbacks for status changes

State machine:
    CONNECTED -> DISCONNECTED -> RECONNECTING -> CONNECTED
                                              -> DISCONNECTED (retry scheduled,
                                                 or attempts exhausted)

Probe failures never propagate to callers; they only update the shared state,
which readers query synchronously.
"""

from __future__ import annotations
import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Coroutine, Dict, List, Optional, Set
import logging

from sync_core.config import SyncConfig
from sync_core.errors import ErrorKind, SyncError, classify_error
from .host_signals import HostEvent, HostSignals
from .subscription import Subscription, SubscriptionList

logger = logging.getLogger(__name__)


class ConnectionStatus(Enum):
    """Connection status states."""
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    RECONNECTING = "reconnecting"


class ConnectionEvent(Enum):
    """Notifications emitted to subscribers."""
    LOST = "lost"
    RESTORED = "restored"
    RECONNECT_EXHAUSTED = "reconnect_exhausted"
    SESSION_EXPIRED = "session_expired"
    VISIBLE = "visible"


@dataclass
class ConnectionState:
    """Current connection state with metadata."""
    status: ConnectionStatus = ConnectionStatus.CONNECTED
    last_probe_at: Optional[float] = None
    last_connected_at: Optional[float] = None
    consecutive_failures: int = 0
    reconnect_attempt: int = 0
    attempts_exhausted: bool = False
    error_message: Optional[str] = None


ConnectionCallback = Callable[[ConnectionEvent, ConnectionState], None]


class ConnectionMonitor:
    """
    Usage:
        monitor = ConnectionMonitor(gateway.probe, config, refresh_session=gateway.refresh_session)
        monitor.attach(host_signals)
        monitor.start()
        if monitor.is_reachable:
            ...
        await monitor.dispose()

    ``scheduler`` must expose ``call_later(delay, callback)`` returning a
    handle with ``cancel()``; the running event loop is used when omitted.
    """

    def __init__(
        self,
        probe_fn: Callable[[], Awaitable[Any]],
        config: Optional[SyncConfig] = None,
        refresh_session: Optional[Callable[[], Awaitable[Any]]] = None,
        clock: Callable[[], float] = time.monotonic,
        scheduler=None,
    ):
        self.config = config or SyncConfig()
        self._probe_fn = probe_fn
        self._refresh_session = refresh_session
        self._clock = clock
        self._scheduler = scheduler

        self._state = ConnectionState()
        self._callbacks: List[ConnectionCallback] = []
        self._subscriptions = SubscriptionList()
        self._tasks: Set[asyncio.Future] = set()

        self._ping_timer = None
        self._reconnect_timer = None
        self._attempt_in_progress = False
        self._retry_requested = False
        self._last_probe_error: Optional[SyncError] = None
        self._hidden_since: Optional[float] = None
        self.visible = True
        self._started = False
        self._disposed = False

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def status(self) -> ConnectionStatus:
        return self._state.status

    @property
    def is_reachable(self) -> bool:
        """Synchronous read used by the fetch layer."""
        return self._state.status is ConnectionStatus.CONNECTED

    @property
    def is_reconnecting(self) -> bool:
        return self._state.status is ConnectionStatus.RECONNECTING

    @property
    def reconnect_scheduled(self) -> bool:
        return self._reconnect_timer is not None

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self) -> None:
        """Begin passive probing: first probe after ``initial_probe_delay``."""
        if self._started or self._disposed:
            return
        self._started = True
        self._ping_timer = self._call_later(self.config.initial_probe_delay, self._on_ping_timer)
        logger.info("ConnectionMonitor started")

    def attach(self, signals: HostSignals) -> None:
        """Subscribe to host events; handles are cancelled on dispose()."""
        self.visible = signals.visible
        self._subscriptions.add(signals.subscribe(HostEvent.ONLINE, self.handle_online))
        self._subscriptions.add(signals.subscribe(HostEvent.OFFLINE, self.handle_offline))
        self._subscriptions.add(signals.subscribe(HostEvent.VISIBLE, self.handle_visible))
        self._subscriptions.add(signals.subscribe(HostEvent.HIDDEN, self.handle_hidden))

    async def dispose(self) -> None:
        """Clear timers, listeners and outstanding probe tasks."""
        self._disposed = True
        self._cancel_ping_timer()
        self._cancel_reconnect_timer()
        self._subscriptions.cancel_all()
        self._callbacks.clear()

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.debug("ConnectionMonitor disposed")

    async def wait_idle(self) -> None:
        """Wait for every probe/reconnect task spawned so far (and their children)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # =========================================================================
    # SUBSCRIPTIONS
    # =========================================================================

    def subscribe(self, callback: ConnectionCallback) -> Subscription:
        """
        Register a callback for connection events.

        Args:
            callback: Called with (ConnectionEvent, ConnectionState)
        """
        if callback not in self._callbacks:
            self._callbacks.append(callback)

        def _remove() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return Subscription(_remove)

    def _emit(self, event: ConnectionEvent) -> None:
        for callback in list(self._callbacks):
            try:
                callback(event, self._state)
            except Exception as e:
                logger.error(f"Error in connection callback: {e}")

    # =========================================================================
    # PROBING
    # =========================================================================

    async def probe(self) -> bool:
        """
        One cheap read against the backend.

        Returns:
            True if the backend answered
        """
        try:
            await asyncio.wait_for(self._probe_fn(), timeout=self.config.probe_timeout)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._on_probe_failure(classify_error(e))
            return False

        self._last_probe_error = None
        self._state.last_probe_at = self._clock()
        self._mark_connected()
        return True

    def _on_probe_failure(self, error: SyncError) -> None:
        self._last_probe_error = error
        self._state.last_probe_at = self._clock()
        logger.warning(f"Connection probe failed: [{error.code}] {error.message}")

        if error.kind is ErrorKind.UNAUTHENTICATED:
            self.report_unauthenticated(error)
            return

        self._state.consecutive_failures += 1
        self._state.error_message = error.message
        if self._state.status is ConnectionStatus.CONNECTED:
            self._mark_lost(error.message)

    def _mark_connected(self) -> None:
        self._state.consecutive_failures = 0
        self._state.error_message = None
        if self._state.status is ConnectionStatus.CONNECTED:
            return

        self._state.status = ConnectionStatus.CONNECTED
        self._state.reconnect_attempt = 0
        self._state.attempts_exhausted = False
        self._state.last_connected_at = self._clock()
        self._cancel_reconnect_timer()
        logger.info("Connection restored")
        self._emit(ConnectionEvent.RESTORED)

    def _mark_lost(self, message: Optional[str]) -> None:
        self._state.status = ConnectionStatus.DISCONNECTED
        self._state.error_message = message
        logger.warning(f"Connection lost: {message}")
        self._emit(ConnectionEvent.LOST)
        self._schedule_reconnect(self.config.reconnect_kickoff_delay)

    # =========================================================================
    # RECONNECTION
    # =========================================================================

    async def attempt_reconnect(self) -> None:
        """
        One reconnection attempt; schedules the next with exponential backoff.

        No-op while another attempt runs or once attempts are exhausted.
        """
        if (
            self._disposed
            or self._attempt_in_progress
            or self._state.status is ConnectionStatus.RECONNECTING
            or self._state.reconnect_attempt >= self.config.max_reconnect_attempts
        ):
            return

        self._attempt_in_progress = True
        self._cancel_reconnect_timer()
        self._state.status = ConnectionStatus.RECONNECTING
        self._state.reconnect_attempt += 1
        attempt = self._state.reconnect_attempt
        max_attempts = self.config.max_reconnect_attempts
        logger.info(f"Reconnect attempt {attempt}/{max_attempts}")

        try:
            await self._try_refresh_session()
            if await self.probe():
                return

            retry = self._retry_requested
            if self._state.status is not ConnectionStatus.RECONNECTING and not retry:
                return
            self._state.status = ConnectionStatus.DISCONNECTED

            error = self._last_probe_error
            if error is not None and error.kind is ErrorKind.UNAUTHENTICATED:
                return

            # A reset arrived mid-attempt: start a fresh cycle
            if retry:
                logger.info("Reconnect requested during attempt; retrying")
                self._spawn(self.attempt_reconnect())
                return

            if attempt < max_attempts:
                delay = self.config.backoff_delay(attempt)
                logger.info(f"Next reconnect attempt in {delay:.1f}s")
                self._schedule_reconnect(delay)
            else:
                self._state.attempts_exhausted = True
                logger.error("Maximum reconnect attempts reached; waiting for an external trigger")
                self._emit(ConnectionEvent.RECONNECT_EXHAUSTED)
        except asyncio.CancelledError:
            if self._state.status is ConnectionStatus.RECONNECTING:
                self._state.status = ConnectionStatus.DISCONNECTED
            raise
        finally:
            self._attempt_in_progress = False
            self._retry_requested = False

    async def _try_refresh_session(self) -> None:
        if self._refresh_session is None:
            return
        try:
            await self._refresh_session()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Session refresh failed: {e}")

    def reset(self) -> Optional[asyncio.Future]:
        """Clear backoff state and retry immediately, or once the running attempt fails."""
        self._cancel_reconnect_timer()
        self._state.reconnect_attempt = 0
        self._state.attempts_exhausted = False

        if self._state.status is ConnectionStatus.CONNECTED:
            return self._spawn(self.probe())
        if self._attempt_in_progress:
            self._retry_requested = True
            return None
        return self._spawn(self.attempt_reconnect())

    def check_now(self) -> Optional[asyncio.Future]:
        """Manual "check now" from the UI."""
        logger.info("Manual connection check")
        return self.reset()

    # =========================================================================
    # HOST SIGNALS
    # =========================================================================

    def handle_online(self) -> None:
        logger.info("Host reports ONLINE")
        self.reset()

    def handle_offline(self) -> None:
        """Network is known to be absent: disconnect without probing."""
        logger.info("Host reports OFFLINE")
        self._state.error_message = "No internet connection"
        if self._state.status is ConnectionStatus.CONNECTED:
            self._mark_lost(self._state.error_message)
        else:
            self._state.status = ConnectionStatus.DISCONNECTED

    def handle_hidden(self) -> None:
        self.visible = False
        self._hidden_since = self._clock()

    def handle_visible(self) -> None:
        self.visible = True
        hidden_for = self._clock() - self._hidden_since if self._hidden_since is not None else 0.0
        self._hidden_since = None
        self._emit(ConnectionEvent.VISIBLE)

        if hidden_for > self.config.ping_interval:
            logger.info(f"Visible again after {hidden_for:.0f}s hidden, checking connection")
            self.check_now()

    # =========================================================================
    # SIGNALS FROM THE FETCH LAYER
    # =========================================================================

    def report_failure(self, error: SyncError) -> None:
        """A data fetch timed out or hit a transport error."""
        self._state.consecutive_failures += 1
        self._state.error_message = error.message
        if self._state.status is ConnectionStatus.CONNECTED:
            self._mark_lost(error.message)

    def report_success(self) -> None:
        """A data fetch succeeded, which proves reachability."""
        if self._attempt_in_progress:
            return
        self._mark_connected()

    def report_unauthenticated(self, error: SyncError) -> None:
        """Session invalid: surface immediately, never back off."""
        self._state.error_message = error.message
        logger.warning(f"Session expired: {error.message}")
        self._emit(ConnectionEvent.SESSION_EXPIRED)

    # =========================================================================
    # TIMERS / TASKS
    # =========================================================================

    def _call_later(self, delay: float, callback: Callable[[], None]):
        scheduler = self._scheduler or asyncio.get_running_loop()
        return scheduler.call_later(delay, callback)

    def _spawn(self, coro: Coroutine) -> Optional[asyncio.Future]:
        if self._disposed:
            coro.close()
            return None
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _schedule_reconnect(self, delay: float) -> None:
        self._cancel_reconnect_timer()
        if self._disposed:
            return
        self._reconnect_timer = self._call_later(delay, self._on_reconnect_timer)

    def _on_reconnect_timer(self) -> None:
        self._reconnect_timer = None
        self._spawn(self.attempt_reconnect())

    def _cancel_reconnect_timer(self) -> None:
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
            self._reconnect_timer = None

    def _on_ping_timer(self) -> None:
        self._ping_timer = self._call_later(self.config.ping_interval, self._on_ping_timer)
        if self.visible and self._state.status is ConnectionStatus.CONNECTED:
            self._spawn(self.probe())

    def _cancel_ping_timer(self) -> None:
        if self._ping_timer is not None:
            self._ping_timer.cancel()
            self._ping_timer = None

    # =========================================================================
    # DISPLAY
    # =========================================================================

    def get_status_display(self) -> Dict[str, Any]:
        """Get status information for UI display."""
        return {
            "status": self._state.status.value,
            "is_connected": self.is_reachable,
            "is_reconnecting": self.is_reconnecting,
            "reconnect_attempt": self._state.reconnect_attempt,
            "max_reconnect_attempts": self.config.max_reconnect_attempts,
            "attempts_exhausted": self._state.attempts_exhausted,
            "failures": self._state.consecutive_failures,
            "last_probe_at": self._state.last_probe_at,
            "error": self._state.error_message,
        }
