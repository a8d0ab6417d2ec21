"""Connection manager: transport lifecycle, pairing, reconnects and keep-alive.

The manager is the only owner of the transport handle and the connection
state. Everything else issues intents (send, heartbeat) through it.

State machine::

    closed --initialize--> connecting --pairing--> qr-pending --auth--> open
    open --transport close--> closed (reconnect decided by the close reason)
    connecting|qr-pending --connect timeout--> closed
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Callable, Optional

from safesend.core.clock import Clock
from safesend.core.config import MessagingConfig
from safesend.core.errors import NotConnectedError, RateLimitError, SecurityBlockedError, TransportError
from safesend.core.events import EventHub
from safesend.core.models import (
    ConnectionState,
    ConnectionUpdate,
    CredentialsUpdate,
    DisconnectReason,
    InboundMessage,
    PairingPayload,
    ReconnectState,
    TransportEvent,
)
from safesend.core.ports import CredentialStorePort, TransportPort
from safesend.core.rate_limiter import AttemptLimiter
from safesend.core.security import SecurityMonitor
from safesend.core.timers import ScopedTimer

LOGGER = logging.getLogger(__name__)

PairingRenderer = Callable[[str], str]


def backoff_delay(attempt: int, base: float, cap: float) -> float:
    """Delay before reconnect attempt ``attempt`` (1-based)."""

    return min(base * (2 ** (attempt - 1)), cap)


class ConnectionManager:
    """Owns the transport connection and its timers."""

    def __init__(
        self,
        config: MessagingConfig,
        transport: TransportPort,
        credentials: CredentialStorePort,
        monitor: SecurityMonitor,
        events: EventHub,
        clock: Clock,
        render_pairing: Optional[PairingRenderer] = None,
        on_open: Optional[Callable[[], None]] = None,
        on_stopped: Optional[Callable[[], None]] = None,
    ) -> None:
        self._config = config
        self._transport = transport
        self._credentials = credentials
        self._monitor = monitor
        self._events = events
        self._clock = clock
        self._render_pairing = render_pairing
        self._on_open = on_open
        self._on_stopped = on_stopped

        self._state = ConnectionState.CLOSED
        self._pairing_payload: Optional[str] = None
        self._handle_live = False
        self._logging_out = False
        self._reader: Optional[asyncio.Task] = None
        self._reconnect_attempts = 0
        self._last_activity = clock.now()

        self._connect_limiter = AttemptLimiter(clock, config.max_connect_attempts, config.connect_attempt_window)
        self._pairing_limiter = AttemptLimiter(clock, config.max_pairing_sessions, config.pairing_session_window)

        self._connect_timer = ScopedTimer("connect-timeout", clock)
        self._pairing_timer = ScopedTimer("pairing-expiry", clock)
        self._session_timer = ScopedTimer("session-refresh", clock)
        self._idle_timer = ScopedTimer("idle-check", clock)
        self._reconnect_timer = ScopedTimer("reconnect", clock)

    # Read-only accessors

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def pairing_payload(self) -> Optional[str]:
        return self._pairing_payload

    @property
    def is_open(self) -> bool:
        return self._state is ConnectionState.OPEN and self._handle_live

    @property
    def last_activity(self) -> float:
        return self._last_activity

    def reconnect_state(self) -> ReconnectState:
        next_delay = None
        if self._reconnect_attempts < self._config.max_reconnect_attempts:
            next_delay = backoff_delay(
                self._reconnect_attempts + 1,
                self._config.reconnect_base_delay,
                self._config.reconnect_max_delay,
            )
        return ReconnectState(attempt_count=self._reconnect_attempts, next_delay=next_delay)

    # Lifecycle

    async def initialize(self) -> bool:
        """Begin a connection on behalf of a caller.

        Returns False without side effects while a connection attempt is
        already underway.
        """

        if self._state in (ConnectionState.CONNECTING, ConnectionState.QR_PENDING):
            LOGGER.info("Connection already initializing")
            return False
        if self.is_open:
            return True
        if self._monitor.is_suspicious():
            raise SecurityBlockedError(
                "Connection blocked due to suspicious activity",
                cooldown_remaining=self._monitor.cooldown_remaining(),
            )
        if not self._connect_limiter.check():
            raise RateLimitError(
                "Too many connection attempts",
                retry_after=self._connect_limiter.remaining_time(),
            )
        # A manual attempt is the intervention that re-arms the reconnect budget.
        self._reconnect_attempts = 0
        self._reconnect_timer.cancel()
        return await self._start()

    async def restore_session(self) -> bool:
        """Initialize only when persisted credentials exist."""

        if not self._credentials.load():
            LOGGER.info("No stored session found; pairing required")
            return False
        LOGGER.info("Found stored session, restoring")
        return await self.initialize()

    async def _start(self) -> bool:
        await self._teardown_transport()
        self._set_state(ConnectionState.CONNECTING)
        self._connect_timer.arm(self._config.connect_timeout, self._on_connect_timeout)

        try:
            stream = await self._transport.connect(self._credentials.load())
        except Exception as exc:
            LOGGER.exception("Transport connect failed")
            self._connect_timer.cancel()
            self._monitor.record_attempt(f"connect failed: {exc}")
            self._set_state(ConnectionState.ERROR)
            self._schedule_reconnect()
            return False

        self._handle_live = True
        self._reader = asyncio.create_task(self._read_events(stream), name="transport-events")
        return True

    async def disconnect(self) -> None:
        """Explicit teardown: every timer cancelled, state closed, no reconnect."""

        self._cancel_timers(include_reconnect=True)
        self._pairing_payload = None
        self._set_state(ConnectionState.CLOSED)
        await self._teardown_transport()
        LOGGER.info("Disconnect completed")

    async def logout(self) -> None:
        """Terminal teardown that also drops the stored credentials."""

        self._logging_out = True
        try:
            if self._handle_live:
                await self._transport.logout()
        except Exception:
            LOGGER.exception("Transport logout failed")
        finally:
            self._logging_out = False
            self._credentials.clear()
            await self.disconnect()
            self._reconnect_attempts = 0
            self._connect_limiter.reset()
            self._pairing_limiter.reset()

    # Intents served through the transport handle

    async def send(self, recipient_id: str, body: str) -> None:
        if not self.is_open:
            raise NotConnectedError("Transport is not connected")
        try:
            await self._transport.send(recipient_id, body)
        except TransportError:
            raise
        except Exception as exc:
            raise TransportError(str(exc) or exc.__class__.__name__) from exc
        self.touch()

    async def heartbeat(self) -> bool:
        """Presence call; on failure fall back to the reconnect scheduler."""

        if not self.is_open:
            return False
        try:
            await self._transport.heartbeat()
        except Exception as exc:
            LOGGER.warning("Heartbeat failed: %s", exc)
            await self._drop_and_reconnect("heartbeat failed")
            return False
        self.touch()
        return True

    def touch(self) -> None:
        self._last_activity = self._clock.now()

    # Transport events

    async def _read_events(self, stream: AsyncIterator[TransportEvent]) -> None:
        closed = False
        try:
            async for event in stream:
                if isinstance(event, ConnectionUpdate) and event.state is ConnectionState.CLOSED:
                    closed = True
                await self._dispatch(event)
                if closed:
                    break
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            LOGGER.exception("Transport event stream failed")
            if not closed:
                closed = True
                await self._handle_close(DisconnectReason.UNKNOWN, str(exc))
        if not closed and self._reader is asyncio.current_task():
            await self._handle_close(DisconnectReason.CONNECTION_LOST, "event stream ended")

    async def _dispatch(self, event: TransportEvent) -> None:
        if isinstance(event, PairingPayload):
            self._handle_pairing(event.payload)
        elif isinstance(event, CredentialsUpdate):
            self._credentials.save(event.blob)
        elif isinstance(event, InboundMessage):
            self.touch()
            self._events.message(event)
        elif isinstance(event, ConnectionUpdate):
            if event.state is ConnectionState.OPEN:
                self._handle_open()
            elif event.state is ConnectionState.CLOSED:
                reason = event.reason or DisconnectReason.UNKNOWN
                if self._logging_out:
                    reason = DisconnectReason.CONNECTION_CLOSED
                await self._handle_close(reason, event.detail)
            elif event.state is ConnectionState.CONNECTING:
                self._set_state(ConnectionState.CONNECTING)

    def _handle_pairing(self, raw_payload: str) -> None:
        first_of_session = not self._pairing_timer.active
        if first_of_session and not self._pairing_limiter.check():
            self._events.security_alert("Too many pairing requests - try again later")
            asyncio.create_task(self._close_locally(), name="pairing-refused")
            return

        rendered = self._render_pairing(raw_payload) if self._render_pairing else raw_payload
        self._pairing_payload = rendered
        self._connect_timer.cancel()
        if first_of_session:
            self._pairing_timer.arm(self._config.pairing_timeout, self._on_pairing_expired)
        LOGGER.info("Pairing payload issued")
        self._set_state(ConnectionState.QR_PENDING)
        self._events.pairing_payload(rendered)

    def _handle_open(self) -> None:
        LOGGER.info("Connection established")
        self._connect_timer.cancel()
        self._pairing_timer.cancel()
        self._reconnect_timer.cancel()
        self._reconnect_attempts = 0
        had_payload = self._pairing_payload is not None
        self._pairing_payload = None
        self.touch()

        self._session_timer.arm_periodic(self._config.session_refresh_period, self._refresh_session)
        self._idle_timer.arm_periodic(self._config.idle_check_interval, self._check_idle)

        self._set_state(ConnectionState.OPEN)
        if had_payload:
            self._events.pairing_payload(None)
        if self._on_open is not None:
            self._on_open()

    async def _handle_close(self, reason: DisconnectReason, detail: str = "") -> None:
        LOGGER.info("Connection closed: %s %s", reason.value, detail)
        was_pairing = self._state is ConnectionState.QR_PENDING or self._pairing_timer.active
        self._handle_live = False
        self._cancel_timers(include_reconnect=False)
        had_payload = self._pairing_payload is not None
        self._pairing_payload = None
        self._set_state(ConnectionState.CLOSED)
        if had_payload:
            self._events.pairing_payload(None)

        if reason is DisconnectReason.BAD_SESSION:
            self._credentials.clear()
            self._events.security_alert("Bad session detected - stored credentials cleared, pairing required")
        elif reason is DisconnectReason.RESTART_REQUIRED:
            self._schedule_reconnect(immediate=True)
            return
        elif reason is DisconnectReason.MULTI_DEVICE_MISMATCH:
            self._events.security_alert("Multi-device mismatch detected")
        elif reason is DisconnectReason.LOGGED_OUT:
            self._credentials.clear()
            self._events.security_alert("Session logged out remotely - pairing required")
        elif reason is DisconnectReason.CONNECTION_CLOSED:
            pass
        elif was_pairing:
            # A pairing code is never reissued without the operator asking for it.
            self._events.security_alert("Pairing code expired - manual refresh required")
        else:
            self._schedule_reconnect()
            return
        self._stopped()

    # Reconnect scheduling

    def _schedule_reconnect(self, immediate: bool = False) -> None:
        if self._reconnect_attempts >= self._config.max_reconnect_attempts:
            self._set_state(ConnectionState.CLOSED)
            self._events.security_alert("Max reconnection attempts reached - manual intervention required")
            self._stopped()
            return

        self._reconnect_attempts += 1
        delay = 0.0
        if not immediate:
            delay = backoff_delay(
                self._reconnect_attempts,
                self._config.reconnect_base_delay,
                self._config.reconnect_max_delay,
            )
        LOGGER.info("Scheduling reconnect attempt %s in %.0fs", self._reconnect_attempts, delay)
        self._reconnect_timer.arm(delay, self._reconnect)

    async def _reconnect(self) -> None:
        if self._state in (ConnectionState.OPEN, ConnectionState.CONNECTING, ConnectionState.QR_PENDING):
            return
        if self._monitor.is_suspicious():
            LOGGER.warning("Reconnect skipped while suspicious activity is flagged")
            self._events.security_alert("Reconnect blocked by suspicious activity - manual reconnect required")
            self._stopped()
            return
        await self._start()

    async def _drop_and_reconnect(self, detail: str) -> None:
        self._cancel_timers(include_reconnect=True)
        await self._teardown_transport()
        await self._handle_close(DisconnectReason.CONNECTION_LOST, detail)

    # Timers

    async def _on_connect_timeout(self) -> None:
        if self._state is not ConnectionState.CONNECTING:
            return
        LOGGER.warning("Connection attempt timed out")
        await self._teardown_transport()
        await self._handle_close(DisconnectReason.TIMED_OUT, "connect timeout")

    async def _on_pairing_expired(self) -> None:
        LOGGER.info("Pairing payload expired")
        self._events.security_alert("Pairing code expired - manual refresh required")
        await self._close_locally()

    async def _refresh_session(self) -> None:
        LOGGER.info("Routine session refresh")
        if await self.heartbeat():
            LOGGER.info("Session extended")

    async def _check_idle(self) -> None:
        idle_for = self._clock.now() - self._last_activity
        if idle_for <= self._config.idle_threshold:
            return
        LOGGER.info("Idle for %.0fs, sending heartbeat", idle_for)
        await self.heartbeat()

    def _cancel_timers(self, include_reconnect: bool) -> None:
        self._connect_timer.cancel()
        self._pairing_timer.cancel()
        self._session_timer.cancel()
        self._idle_timer.cancel()
        if include_reconnect:
            self._reconnect_timer.cancel()

    # Helpers

    async def _close_locally(self) -> None:
        """Close without reconnecting (expired or refused pairing)."""

        self._cancel_timers(include_reconnect=True)
        self._pairing_payload = None
        self._set_state(ConnectionState.CLOSED)
        self._events.pairing_payload(None)
        await self._teardown_transport()
        self._stopped()

    def _stopped(self) -> None:
        """Notify the owner that no reconnect will follow this close."""

        if self._on_stopped is not None:
            self._on_stopped()

    async def _teardown_transport(self) -> None:
        reader, self._reader = self._reader, None
        live, self._handle_live = self._handle_live, False
        if reader is not None and not reader.done() and reader is not asyncio.current_task():
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass
        if live:
            try:
                await self._transport.disconnect()
            except Exception:
                LOGGER.exception("Transport disconnect failed")

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        LOGGER.info("Connection state %s -> %s", self._state.value, state.value)
        self._state = state
        self._events.connection_state(state)
