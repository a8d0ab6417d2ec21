"""Security monitor: rolling counters and the suspicious-activity breaker."""

from __future__ import annotations

import logging
from collections import deque
from typing import Callable, Deque, Optional

from safesend.core.clock import Clock
from safesend.core.config import MessagingConfig
from safesend.core.models import SecurityMetrics

LOGGER = logging.getLogger(__name__)

MINUTE = 60.0
HOUR = 3600.0


class SlidingWindowCounter:
    """Counts events whose timestamp falls inside the trailing window."""

    def __init__(self, window: float) -> None:
        self.window = window
        self._events: Deque[float] = deque()

    def add(self, ts: float) -> None:
        self._events.append(ts)

    def count(self, now: float) -> int:
        self._prune(now)
        return len(self._events)

    def oldest(self, now: float) -> Optional[float]:
        self._prune(now)
        return self._events[0] if self._events else None

    def clear(self) -> None:
        self._events.clear()

    def _prune(self, now: float) -> None:
        cutoff = now - self.window
        while self._events and self._events[0] <= cutoff:
            self._events.popleft()


class SecurityMonitor:
    """Single writer of the security metrics.

    Message counters are sliding windows over the injected clock, so there
    are no reset timers to drift. The suspicious flag is a deadline: it
    clears itself once the cooldown has elapsed.
    """

    def __init__(
        self,
        config: MessagingConfig,
        clock: Clock,
        alert: Optional[Callable[[str], None]] = None,
    ) -> None:
        self._config = config
        self._clock = clock
        self._alert = alert
        self._minute = SlidingWindowCounter(MINUTE)
        self._hour = SlidingWindowCounter(HOUR)
        self._violations = SlidingWindowCounter(config.violation_window)
        self._failed_attempts = 0
        self._last_message_time: Optional[float] = None
        self._suspicious_until: Optional[float] = None

    def record_message(self) -> None:
        now = self._clock.now()
        self._minute.add(now)
        self._hour.add(now)
        self._last_message_time = now

    def record_attempt(self, reason: str = "") -> None:
        """Count a failed send or connection attempt."""

        self._failed_attempts += 1
        LOGGER.info("Failed attempt recorded (%s): total=%s", reason or "unspecified", self._failed_attempts)
        if self._failed_attempts > self._config.failed_attempt_alert_threshold:
            self._raise_alert(f"Too many failed attempts ({self._failed_attempts})")

    def record_violation(self, reason: str) -> None:
        """Count a rate-limit violation and trip the breaker past the threshold."""

        now = self._clock.now()
        self._violations.add(now)
        self._raise_alert(reason)
        if self._violations.count(now) > self._config.violation_threshold and not self.is_suspicious():
            self._suspicious_until = now + self._config.suspicious_cooldown
            LOGGER.warning(
                "Suspicious activity flagged; outbound blocked for %.0fs",
                self._config.suspicious_cooldown,
            )

    def is_suspicious(self) -> bool:
        if self._suspicious_until is None:
            return False
        if self._clock.now() < self._suspicious_until:
            return True
        self._suspicious_until = None
        # A fresh start after the cooldown; old violations no longer count.
        self._violations.clear()
        LOGGER.info("Suspicious activity cooldown elapsed")
        return False

    def cooldown_remaining(self) -> float:
        if not self.is_suspicious():
            return 0.0
        return max(0.0, self._suspicious_until - self._clock.now())

    def messages_this_minute(self) -> int:
        return self._minute.count(self._clock.now())

    def messages_this_hour(self) -> int:
        return self._hour.count(self._clock.now())

    def last_message_time(self) -> Optional[float]:
        return self._last_message_time

    def minute_slot_free_in(self) -> float:
        """Seconds until the oldest message leaves the minute window."""

        now = self._clock.now()
        oldest = self._minute.oldest(now)
        if oldest is None:
            return 0.0
        return max(0.0, oldest + MINUTE - now)

    def hour_slot_free_in(self) -> float:
        now = self._clock.now()
        oldest = self._hour.oldest(now)
        if oldest is None:
            return 0.0
        return max(0.0, oldest + HOUR - now)

    def snapshot(self) -> SecurityMetrics:
        now = self._clock.now()
        suspicious = self.is_suspicious()
        return SecurityMetrics(
            messages_this_minute=self._minute.count(now),
            messages_this_hour=self._hour.count(now),
            failed_attempts=self._failed_attempts,
            rate_limit_violations=self._violations.count(now),
            last_message_time=self._last_message_time,
            suspicious_activity=suspicious,
        )

    def reset(self) -> None:
        self._minute.clear()
        self._hour.clear()
        self._violations.clear()
        self._failed_attempts = 0
        self._last_message_time = None
        self._suspicious_until = None

    def _raise_alert(self, message: str) -> None:
        if self._alert is not None:
            self._alert(message)
        else:
            LOGGER.warning("Security alert: %s", message)
