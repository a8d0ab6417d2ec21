"""Admission rate limiting (core domain)."""

from __future__ import annotations

import logging
from collections import Counter
from typing import Dict, Tuple

from safesend.core.clock import Clock
from safesend.core.config import MessagingConfig
from safesend.core.errors import RateLimitError
from safesend.core.security import SecurityMonitor

LOGGER = logging.getLogger(__name__)


class RateLimiter:
    """Global gate: minimum interval plus per-minute and per-hour ceilings.

    Counters live in the security monitor; this class only reads them and
    records admitted messages. Every rejection is reported as a violation.
    """

    def __init__(self, config: MessagingConfig, monitor: SecurityMonitor, clock: Clock) -> None:
        self._config = config
        self._monitor = monitor
        self._clock = clock
        # Observability only; the binding constraint is the global interval.
        self._recipient_attempts: Counter[str] = Counter()

    def acquire(self, recipient_id: str) -> None:
        """Admit one message or raise RateLimitError."""

        self._recipient_attempts[recipient_id] += 1

        if self._monitor.messages_this_minute() >= self._config.max_messages_per_minute:
            self._reject(
                "Rate limit exceeded: too many messages per minute",
                self._monitor.minute_slot_free_in(),
            )
        if self._monitor.messages_this_hour() >= self._config.max_messages_per_hour:
            self._reject(
                "Rate limit exceeded: too many messages per hour",
                self._monitor.hour_slot_free_in(),
            )
        remaining = self.interval_remaining()
        if remaining > 0:
            self._reject("Rate limit exceeded: minimum interval between messages", remaining)

        self._monitor.record_message()

    def try_acquire(self, recipient_id: str) -> bool:
        try:
            self.acquire(recipient_id)
        except RateLimitError:
            return False
        return True

    def interval_remaining(self) -> float:
        """Seconds until the minimum inter-message interval has elapsed."""

        last = self._monitor.last_message_time()
        if last is None:
            return 0.0
        return max(0.0, last + self._config.min_message_interval - self._clock.now())

    def recipient_attempts(self, recipient_id: str) -> int:
        return self._recipient_attempts[recipient_id]

    def reset(self) -> None:
        self._recipient_attempts.clear()

    def _reject(self, reason: str, retry_after: float) -> None:
        self._monitor.record_violation(reason)
        raise RateLimitError(reason, retry_after=retry_after)


class AttemptLimiter:
    """Fixed-window attempt counter keyed by action name.

    Used for manual connection attempts and pairing sessions, where a reset
    after the window is the intended behaviour.
    """

    def __init__(self, clock: Clock, max_count: int, window: float) -> None:
        self._clock = clock
        self._max_count = max_count
        self._window = window
        self._entries: Dict[str, Tuple[int, float]] = {}

    def check(self, key: str = "default") -> bool:
        now = self._clock.now()
        count, reset_at = self._entries.get(key, (0, 0.0))
        if not count or now >= reset_at:
            self._entries[key] = (1, now + self._window)
            return True
        if count >= self._max_count:
            return False
        self._entries[key] = (count + 1, reset_at)
        return True

    def remaining_time(self, key: str = "default") -> float:
        entry = self._entries.get(key)
        if entry is None:
            return 0.0
        return max(0.0, entry[1] - self._clock.now())

    def reset(self, key: str | None = None) -> None:
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)
