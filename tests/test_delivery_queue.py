from __future__ import annotations

import asyncio

import pytest
from fakes import open_service

from safesend.core.config import MessagingConfig
from safesend.core.errors import DuplicateMessageError, TransportError
from safesend.core.models import ConnectionState, ConnectionUpdate, DisconnectReason


def test_message_delivered_and_marked_for_dedup() -> None:
    async def scenario() -> None:
        service, transport, _, clock, _ = await open_service()
        item = await service.send_message("@Alice_1", "Fee due Friday")
        await clock.settle()

        assert await item.outcome is True
        assert transport.sent == [(clock.now(), "@alice_1", "Fee due Friday")]

        await clock.advance(13)
        with pytest.raises(DuplicateMessageError):
            await service.send_message("@alice_1", "fee   due friday")
        await service.disconnect()

    asyncio.run(scenario())


def test_identical_message_rejected_while_pending() -> None:
    async def scenario() -> None:
        service, transport, _, clock, _ = await open_service()
        transport.send_failures = [TransportError("flaky")]
        await service.send_message("@alice_1", "Reminder")
        await clock.settle()
        assert service.queue.pending == 1

        with pytest.raises(DuplicateMessageError):
            await service.send_message("@alice_1", "Reminder")
        # The duplicate did not consume rate quota.
        assert service.get_security_metrics().messages_this_minute == 1
        await service.disconnect()

    asyncio.run(scenario())


def test_failed_send_retried_twice_then_dropped() -> None:
    async def scenario() -> None:
        service, transport, _, clock, _ = await open_service()
        transport.send_failures = [TransportError("boom") for _ in range(3)]

        item = await service.send_message("@alice_1", "Reminder")
        await clock.advance(30)

        assert await item.outcome is False
        assert item.retry_count == 2
        assert transport.sent == []
        assert service.queue.failed_count == 1
        assert service.get_security_metrics().failed_attempts == 1
        await service.disconnect()

    asyncio.run(scenario())


def test_retried_item_keeps_its_place_ahead_of_newer_items() -> None:
    async def scenario() -> None:
        config = MessagingConfig(retry_backoff=20.0)
        service, transport, _, clock, _ = await open_service(config)
        transport.send_failures = [TransportError("flaky")]

        first = await service.send_message("@alice_1", "first")
        await clock.advance(12)
        second = await service.send_message("@bobby_2", "second")
        await clock.advance(60)

        assert await first.outcome is True
        assert await second.outcome is True
        assert [(recipient, body) for _, recipient, body in transport.sent] == [
            ("@alice_1", "first"),
            ("@bobby_2", "second"),
        ]
        assert transport.sent[1][0] - transport.sent[0][0] >= 12
        await service.disconnect()

    asyncio.run(scenario())


def test_abuse_signal_counts_as_violation_and_honours_retry_after() -> None:
    async def scenario() -> None:
        service, transport, _, clock, alerts = await open_service()
        transport.send_failures = [TransportError("flood", retry_after=42.0, abuse_signal=True)]

        item = await service.send_message("@alice_1", "Reminder")
        await clock.advance(41)
        assert transport.sent == []
        await clock.advance(1)

        assert await item.outcome is True
        assert service.get_security_metrics().rate_limit_violations == 1
        assert any("flood" in alert for alert in alerts)
        await service.disconnect()

    asyncio.run(scenario())


def test_queue_pauses_while_disconnected_and_resumes_on_open() -> None:
    async def scenario() -> None:
        service, transport, _, clock, _ = await open_service()
        transport.close(DisconnectReason.CONNECTION_LOST)
        await clock.settle()
        assert not service.is_ready()

        # Admitted before the drop would be visible to a caller.
        item = service.queue.enqueue("@alice_1", "Reminder")
        await clock.settle()
        assert service.queue.pending == 1
        assert not service.queue.running

        await clock.advance(30)
        assert await item.outcome is True
        assert len(transport.sent) == 1
        await service.disconnect()

    asyncio.run(scenario())


def test_disconnect_resolves_pending_items_as_not_delivered() -> None:
    async def scenario() -> None:
        service, transport, _, clock, _ = await open_service()
        transport.send_failures = [TransportError("flaky")]
        item = await service.send_message("@alice_1", "Reminder")
        await clock.settle()

        await service.disconnect()
        assert await item.outcome is False
        assert service.queue.pending == 0
        await service.wait_until_idle()

    asyncio.run(scenario())


def test_disconnect_resolves_the_message_being_sent() -> None:
    async def scenario() -> None:
        service, transport, _, clock, _ = await open_service()
        stalled = asyncio.get_running_loop().create_future()

        async def hanging_send(recipient_id: str, body: str) -> None:
            await stalled

        transport.send = hanging_send
        item = await service.send_message("@alice_1", "Reminder")
        await clock.settle()
        assert service.queue.pending == 0
        assert not item.outcome.done()

        await service.disconnect()
        await clock.settle()
        assert item.outcome.done()
        assert await item.outcome is False
        assert not service.queue.running
        await service.wait_until_idle()

    asyncio.run(scenario())


def test_remote_logout_drops_paused_messages() -> None:
    async def scenario() -> None:
        service, transport, _, clock, _ = await open_service()
        transport.close(DisconnectReason.CONNECTION_LOST)
        await clock.settle()
        item = service.queue.enqueue("@alice_1", "Reminder")
        await clock.settle()
        assert service.queue.pending == 1

        transport.script = [ConnectionUpdate(ConnectionState.CLOSED, reason=DisconnectReason.LOGGED_OUT)]
        await clock.advance(30)

        assert service.get_connection_state() is ConnectionState.CLOSED
        assert await item.outcome is False
        assert service.queue.pending == 0
        assert transport.sent == []

    asyncio.run(scenario())
