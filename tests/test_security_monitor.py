from __future__ import annotations

from fakes import FakeClock

from safesend.core.config import MessagingConfig
from safesend.core.security import SecurityMonitor, SlidingWindowCounter


def test_sliding_window_drops_expired_events() -> None:
    counter = SlidingWindowCounter(60.0)
    counter.add(0.0)
    counter.add(30.0)
    assert counter.count(59.0) == 2
    assert counter.count(60.0) == 1
    assert counter.oldest(60.0) == 30.0
    assert counter.count(91.0) == 0


def test_fourth_violation_flags_suspicious_activity() -> None:
    clock = FakeClock()
    alerts: list[str] = []
    monitor = SecurityMonitor(MessagingConfig(), clock, alert=alerts.append)

    for _ in range(3):
        monitor.record_violation("too fast")
    assert not monitor.is_suspicious()

    monitor.record_violation("too fast")
    assert monitor.is_suspicious()
    assert monitor.cooldown_remaining() == 300.0
    assert len(alerts) == 4
    assert monitor.snapshot().suspicious_activity


def test_suspicious_flag_clears_after_cooldown() -> None:
    clock = FakeClock()
    monitor = SecurityMonitor(MessagingConfig(), clock)
    for _ in range(4):
        monitor.record_violation("too fast")

    clock._now += 299.0
    assert monitor.is_suspicious()
    clock._now += 1.0
    assert not monitor.is_suspicious()
    # Old violations do not immediately re-trip the breaker.
    monitor.record_violation("too fast")
    assert not monitor.is_suspicious()
    assert monitor.snapshot().rate_limit_violations == 1


def test_message_counters_are_sliding_windows() -> None:
    clock = FakeClock()
    monitor = SecurityMonitor(MessagingConfig(), clock)
    monitor.record_message()
    clock._now += 30.0
    monitor.record_message()

    assert monitor.messages_this_minute() == 2
    assert monitor.minute_slot_free_in() == 30.0
    clock._now += 30.0
    assert monitor.messages_this_minute() == 1
    assert monitor.messages_this_hour() == 2
    assert monitor.last_message_time() == 1030.0


def test_failed_attempts_alert_past_threshold() -> None:
    clock = FakeClock()
    alerts: list[str] = []
    monitor = SecurityMonitor(MessagingConfig(), clock, alert=alerts.append)

    for _ in range(3):
        monitor.record_attempt("send failed")
    assert alerts == []

    monitor.record_attempt("send failed")
    assert alerts == ["Too many failed attempts (4)"]
    assert monitor.snapshot().failed_attempts == 4


def test_reset_clears_everything() -> None:
    clock = FakeClock()
    monitor = SecurityMonitor(MessagingConfig(), clock)
    monitor.record_message()
    monitor.record_attempt()
    for _ in range(4):
        monitor.record_violation("x")

    monitor.reset()
    metrics = monitor.snapshot()
    assert metrics.messages_this_minute == 0
    assert metrics.failed_attempts == 0
    assert metrics.rate_limit_violations == 0
    assert metrics.last_message_time is None
    assert not metrics.suspicious_activity
