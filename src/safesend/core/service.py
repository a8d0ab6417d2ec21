"""Messaging service: the single entry point used by the application layer.

The service is an explicit instance built from a config object and injected
ports. It wires the security monitor, dedup store, rate limiter, delivery
queue, connection manager and broadcast orchestrator together and exposes
the operations the application needs.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from safesend.core.broadcast import BroadcastOrchestrator
from safesend.core.clock import Clock, MonotonicClock
from safesend.core.config import MessagingConfig
from safesend.core.connection import ConnectionManager, PairingRenderer
from safesend.core.dedup import DedupStore
from safesend.core.delivery import DeliveryQueue
from safesend.core.errors import NotConnectedError, SecurityBlockedError
from safesend.core.events import EventHub
from safesend.core.models import (
    BroadcastResult,
    ConnectionState,
    OutboundMessage,
    QueuedMessage,
    ReconnectState,
    SecurityMetrics,
    ServiceStatus,
)
from safesend.core.ports import CredentialStorePort, TransportPort
from safesend.core.rate_limiter import RateLimiter
from safesend.core.security import SecurityMonitor
from safesend.core.validation import mask_recipient, parse_recipient_id, sanitize_body

LOGGER = logging.getLogger(__name__)

STABLE_FAILED_ATTEMPTS = 3


class MessagingService:
    """Rate-limited, deduplicated outbound messaging over one transport."""

    def __init__(
        self,
        config: MessagingConfig,
        transport: TransportPort,
        credentials: CredentialStorePort,
        clock: Optional[Clock] = None,
        render_pairing: Optional[PairingRenderer] = None,
    ) -> None:
        self.config = config
        self.clock = clock or MonotonicClock()
        self.events = EventHub()

        self._monitor = SecurityMonitor(config, self.clock, alert=self.events.security_alert)
        self._dedup = DedupStore(self.clock, config.duplicate_block_window)
        self._limiter = RateLimiter(config, self._monitor, self.clock)
        self._connection = ConnectionManager(
            config,
            transport,
            credentials,
            self._monitor,
            self.events,
            self.clock,
            render_pairing=render_pairing,
            on_open=self._on_open,
            on_stopped=self._on_stopped,
        )
        self._queue: Optional[DeliveryQueue] = None
        self._broadcaster = BroadcastOrchestrator(
            config,
            self.send_message,
            self._limiter,
            self._monitor,
            lambda: self._connection.is_open,
            self.clock,
        )

    @property
    def queue(self) -> DeliveryQueue:
        # Built lazily so it binds to the running event loop.
        if self._queue is None:
            self._queue = DeliveryQueue(
                self.config,
                self._connection.send,
                self._dedup,
                self._limiter,
                self._monitor,
                self.clock,
            )
        return self._queue

    # Connection

    async def initialize(self) -> bool:
        return await self._connection.initialize()

    async def restore_session(self) -> bool:
        return await self._connection.restore_session()

    async def disconnect(self) -> None:
        """Stop delivery and close the connection without reconnecting."""

        self.queue.clear()
        await self._connection.disconnect()

    async def logout(self) -> None:
        """Terminal teardown: credentials cleared and every counter reset."""

        self.queue.clear()
        await self._connection.logout()
        self._monitor.reset()
        self._limiter.reset()
        LOGGER.info("Logged out")

    def get_pairing_payload(self) -> Optional[str]:
        return self._connection.pairing_payload

    def get_connection_state(self) -> ConnectionState:
        return self._connection.state

    def get_reconnect_state(self) -> ReconnectState:
        return self._connection.reconnect_state()

    def is_ready(self) -> bool:
        return self._connection.is_open and not self._monitor.is_suspicious()

    # Sending

    async def send_message(self, recipient_id: str, body: str) -> QueuedMessage:
        """Admit one message for delivery.

        Raises a DeliveryError subclass when the message is rejected;
        the returned item's ``outcome`` resolves once delivery settles.
        """

        if self._monitor.is_suspicious():
            raise SecurityBlockedError(
                "Message blocked due to suspicious activity",
                cooldown_remaining=self._monitor.cooldown_remaining(),
            )
        recipient = parse_recipient_id(recipient_id).normalized
        text = sanitize_body(body, self.config.max_body_chars)
        if not self._connection.is_open:
            raise NotConnectedError("Transport is not connected")

        LOGGER.info("Send request for %s", mask_recipient(recipient))
        return self.queue.enqueue(recipient, text)

    async def broadcast(self, recipient_ids: Sequence[str], body: str) -> BroadcastResult:
        return await self._broadcaster.broadcast(recipient_ids, body)

    async def send_batch(self, messages: Sequence[OutboundMessage]) -> BroadcastResult:
        return await self._broadcaster.send_batch(messages)

    async def wait_until_idle(self) -> None:
        await self.queue.join()

    # Observability

    def get_security_metrics(self) -> SecurityMetrics:
        return self._monitor.snapshot()

    def status(self) -> ServiceStatus:
        metrics = self._monitor.snapshot()
        return ServiceStatus(
            connection_state=self._connection.state,
            ready=self.is_ready(),
            pairing_payload=self._connection.pairing_payload,
            is_secure=not metrics.suspicious_activity,
            messages_this_hour=metrics.messages_this_hour,
            connection_stability="stable" if metrics.failed_attempts < STABLE_FAILED_ATTEMPTS else "unstable",
            pending_messages=self.queue.pending if self._queue is not None else 0,
        )

    def _on_open(self) -> None:
        self.queue.ensure_processor()

    def _on_stopped(self) -> None:
        # Nothing will reopen the connection, so pending sends can never settle.
        if self._queue is not None and self._queue.clear():
            LOGGER.warning("Connection stopped; pending messages were dropped")
