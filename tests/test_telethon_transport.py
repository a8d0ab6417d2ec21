from __future__ import annotations

import asyncio

import pytest

pytest.importorskip("telethon")

from telethon import errors  # noqa: E402

from safesend.adapters.telethon_transport import (  # noqa: E402
    TelethonTransport,
    classify_disconnect,
    resolve_entity,
)
from safesend.core.errors import TransportError  # noqa: E402
from safesend.core.models import DisconnectReason  # noqa: E402


class FakeClient:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.sent: list = []

    async def send_message(self, entity, body) -> None:
        if self.error is not None:
            raise self.error
        self.sent.append((entity, body))


def test_resolve_entity() -> None:
    assert resolve_entity("chat_id:-100123") == -100123
    assert resolve_entity("@alice_1") == "@alice_1"
    assert resolve_entity("+4915123456789") == "+4915123456789"


def test_classify_disconnect() -> None:
    assert classify_disconnect(errors.AuthKeyDuplicatedError(request=None)) is DisconnectReason.MULTI_DEVICE_MISMATCH
    assert classify_disconnect(errors.AuthKeyUnregisteredError(request=None)) is DisconnectReason.BAD_SESSION
    assert classify_disconnect(errors.SessionRevokedError(request=None)) is DisconnectReason.LOGGED_OUT
    assert classify_disconnect(asyncio.TimeoutError()) is DisconnectReason.TIMED_OUT
    assert classify_disconnect(ConnectionResetError()) is DisconnectReason.CONNECTION_LOST


def test_send_maps_flood_wait_to_abuse_signal() -> None:
    async def scenario() -> None:
        transport = TelethonTransport(1, "hash")
        transport._client = FakeClient(errors.FloodWaitError(request=None, capture=42))
        with pytest.raises(TransportError) as excinfo:
            await transport.send("chat_id:7", "Reminder")
        assert excinfo.value.abuse_signal
        assert excinfo.value.retry_after == 42.0

    asyncio.run(scenario())


def test_send_resolves_chat_ids() -> None:
    async def scenario() -> None:
        transport = TelethonTransport(1, "hash")
        client = FakeClient()
        transport._client = client
        await transport.send("chat_id:7", "Reminder")
        assert client.sent == [(7, "Reminder")]

    asyncio.run(scenario())


def test_send_without_client_raises_transport_error() -> None:
    async def scenario() -> None:
        with pytest.raises(TransportError):
            await TelethonTransport(1, "hash").send("@alice_1", "Reminder")

    asyncio.run(scenario())
