"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any integration-specific types.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union


class ConnectionState(str, Enum):
    """Lifecycle state of the transport connection."""

    CLOSED = "closed"
    CONNECTING = "connecting"
    OPEN = "open"
    QR_PENDING = "qr-pending"
    ERROR = "error"


class DisconnectReason(str, Enum):
    """Why the transport reported a close."""

    BAD_SESSION = "bad-session"
    RESTART_REQUIRED = "restart-required"
    MULTI_DEVICE_MISMATCH = "multi-device-mismatch"
    LOGGED_OUT = "logged-out"
    CONNECTION_LOST = "connection-lost"
    CONNECTION_CLOSED = "connection-closed"
    TIMED_OUT = "timed-out"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class SecurityMetrics:
    """Read-only snapshot of the security monitor counters."""

    messages_this_minute: int
    messages_this_hour: int
    failed_attempts: int
    rate_limit_violations: int
    last_message_time: Optional[float]
    suspicious_activity: bool


@dataclass
class QueuedMessage:
    """A pending send owned by the delivery queue.

    ``outcome`` resolves to True once delivered, or False when the item is
    dropped after its retries or cleared by a disconnect.
    """

    recipient_id: str
    body: str
    enqueued_at: float
    retry_count: int = 0
    fingerprint: str = ""
    outcome: Optional[asyncio.Future] = field(default=None, repr=False, compare=False)

    def resolve(self, delivered: bool) -> None:
        if self.outcome is not None and not self.outcome.done():
            self.outcome.set_result(delivered)


@dataclass(frozen=True)
class ReconnectState:
    """Snapshot of the reconnect scheduler."""

    attempt_count: int
    next_delay: Optional[float]


@dataclass(frozen=True)
class OutboundMessage:
    """One recipient/body pair of a batch send."""

    recipient_id: str
    body: str


@dataclass(frozen=True)
class BroadcastResult:
    """Aggregate tally of a broadcast."""

    success_count: int
    failed_count: int

    @property
    def total(self) -> int:
        return self.success_count + self.failed_count

    @property
    def success_rate(self) -> float:
        if not self.total:
            return 0.0
        return round(self.success_count / self.total * 100, 1)


@dataclass(frozen=True)
class ServiceStatus:
    """Safe status summary for the application layer."""

    connection_state: ConnectionState
    ready: bool
    pairing_payload: Optional[str]
    is_secure: bool
    messages_this_hour: int
    connection_stability: str
    pending_messages: int


# Transport events


@dataclass(frozen=True)
class ConnectionUpdate:
    state: ConnectionState
    reason: Optional[DisconnectReason] = None
    detail: str = ""


@dataclass(frozen=True)
class PairingPayload:
    payload: str


@dataclass(frozen=True)
class InboundMessage:
    sender_id: str
    text: str
    received_at: float


@dataclass(frozen=True)
class CredentialsUpdate:
    blob: str


TransportEvent = Union[ConnectionUpdate, PairingPayload, InboundMessage, CredentialsUpdate]
