from __future__ import annotations

import asyncio

import pytest
from fakes import build_service, open_service

from safesend.core.errors import (
    DeliveryError,
    NotConnectedError,
    RateLimitError,
    SecurityBlockedError,
    ValidationError,
)
from safesend.core.models import ConnectionState


def test_repeated_fast_sends_trip_the_breaker_until_cooldown() -> None:
    async def scenario() -> None:
        service, transport, _, clock, alerts = await open_service()
        await service.send_message("@alice_1", "Reminder 0")

        for index in range(1, 5):
            with pytest.raises(RateLimitError):
                await service.send_message("@alice_1", f"Reminder {index}")

        with pytest.raises(SecurityBlockedError) as excinfo:
            await service.send_message("@bobby_2", "Reminder")
        assert excinfo.value.cooldown_remaining == pytest.approx(300.0)
        assert excinfo.value.retryable
        assert not service.is_ready()
        assert not service.status().is_secure
        assert len(alerts) == 4

        await clock.advance(300)
        item = await service.send_message("@bobby_2", "Reminder")
        await clock.settle()
        assert await item.outcome is True
        assert len(transport.sent) == 2
        await service.disconnect()

    asyncio.run(scenario())


def test_suspicious_activity_blocks_initialize() -> None:
    async def scenario() -> None:
        service, transport, _, clock, _ = build_service()
        for _ in range(4):
            service._monitor.record_violation("manual")

        with pytest.raises(SecurityBlockedError):
            await service.initialize()
        assert transport.connect_calls == []

    asyncio.run(scenario())


def test_send_rejections_are_typed() -> None:
    async def scenario() -> None:
        service, _, _, _, _ = build_service()
        with pytest.raises(ValidationError):
            await service.send_message("alice", "Reminder")
        with pytest.raises(ValidationError):
            await service.send_message("@alice_1", "   ")
        with pytest.raises(NotConnectedError) as excinfo:
            await service.send_message("@alice_1", "Reminder")
        assert isinstance(excinfo.value, DeliveryError)
        assert excinfo.value.retryable

    asyncio.run(scenario())


def test_status_summary() -> None:
    async def scenario() -> None:
        service, _, _, clock, _ = build_service()
        status = service.status()
        assert status.connection_state is ConnectionState.CLOSED
        assert not status.ready
        assert status.pending_messages == 0

        await service.initialize()
        await clock.settle()
        await service.send_message("@alice_1", "Reminder")
        await clock.settle()

        status = service.status()
        assert status.connection_state is ConnectionState.OPEN
        assert status.ready
        assert status.is_secure
        assert status.messages_this_hour == 1
        assert status.connection_stability == "stable"
        assert status.pairing_payload is None
        await service.disconnect()

    asyncio.run(scenario())


def test_connection_state_observers_see_transitions() -> None:
    async def scenario() -> None:
        service, _, _, clock, _ = build_service()
        states: list = []
        service.events.on_connection_state(states.append)
        # A failing observer must not stop the others.
        service.events.on_connection_state(lambda state: 1 / 0)

        await service.initialize()
        await clock.settle()
        await service.disconnect()
        assert states == [ConnectionState.CONNECTING, ConnectionState.OPEN, ConnectionState.CLOSED]

    asyncio.run(scenario())


def test_logout_clears_credentials_and_counters() -> None:
    async def scenario() -> None:
        service, transport, store, clock, alerts = await open_service()
        await service.send_message("@alice_1", "Reminder")
        await clock.settle()

        await service.logout()
        await clock.advance(1000)

        assert transport.logouts == 1
        assert store.blob is None
        assert service.get_connection_state() is ConnectionState.CLOSED
        assert service.get_security_metrics().messages_this_hour == 0
        assert len(transport.connect_calls) == 1
        assert not any("logged out remotely" in alert for alert in alerts)

    asyncio.run(scenario())


def test_wait_until_idle_returns_after_delivery() -> None:
    async def scenario() -> None:
        service, transport, _, clock, _ = await open_service()
        await service.send_message("@alice_1", "Reminder")
        waiter = asyncio.create_task(service.wait_until_idle())
        await clock.settle()
        assert not waiter.done()

        await clock.advance(12)
        assert waiter.done()
        assert len(transport.sent) == 1
        await service.disconnect()

    asyncio.run(scenario())
