"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
All durations are in seconds.
"""

from __future__ import annotations

from dataclasses import dataclass, fields


@dataclass(frozen=True)
class MessagingConfig:
    """Tunable limits for the outbound messaging layer."""

    # Rate limiting
    max_messages_per_minute: int = 5
    max_messages_per_hour: int = 50
    min_message_interval: float = 12.0

    # Reconnection
    reconnect_base_delay: float = 30.0
    reconnect_max_delay: float = 300.0
    max_reconnect_attempts: int = 5
    connect_timeout: float = 60.0

    # Broadcast
    broadcast_batch_size: int = 3
    broadcast_batch_delay: float = 60.0
    max_broadcast_recipients: int = 50
    broadcast_cooldown: float = 300.0

    # Deduplication
    duplicate_block_window: float = 3600.0

    # Session keep-alive
    session_refresh_period: float = 8 * 3600.0
    pairing_timeout: float = 120.0
    idle_threshold: float = 3600.0
    idle_check_interval: float = 300.0

    # Delivery retries
    max_send_retries: int = 2
    retry_backoff: float = 5.0

    # Security monitor
    violation_threshold: int = 3
    violation_window: float = 3600.0
    suspicious_cooldown: float = 300.0
    failed_attempt_alert_threshold: int = 3

    # Admission limits for connection attempts and pairing sessions
    max_connect_attempts: int = 5
    connect_attempt_window: float = 1800.0
    max_pairing_sessions: int = 3
    pairing_session_window: float = 3600.0

    # Message validation
    max_body_chars: int = 4000

    def __post_init__(self) -> None:
        for item in fields(self):
            value = getattr(self, item.name)
            if value < 0:
                raise ValueError(f"{item.name} must not be negative (got {value})")
        if self.broadcast_batch_size < 1:
            raise ValueError("broadcast_batch_size must be at least 1")
        if self.max_messages_per_minute < 1 or self.max_messages_per_hour < 1:
            raise ValueError("message ceilings must be at least 1")
        if self.reconnect_max_delay < self.reconnect_base_delay:
            raise ValueError("reconnect_max_delay must be >= reconnect_base_delay")
        if self.max_body_chars < 1:
            raise ValueError("max_body_chars must be at least 1")

    @classmethod
    def field_names(cls) -> set[str]:
        return {item.name for item in fields(cls)}
