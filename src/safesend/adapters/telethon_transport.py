"""Telethon transport adapter.

Implements the core TransportPort on a Telegram user client. This keeps
Telethon-specific details (QR login, error classes, presence requests) out
of the core.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Optional, Union

from telethon import TelegramClient, errors, events, functions
from telethon.sessions import StringSession

from safesend.core.errors import FatalSessionError, TransportError
from safesend.core.models import (
    ConnectionState,
    ConnectionUpdate,
    CredentialsUpdate,
    DisconnectReason,
    InboundMessage,
    PairingPayload,
    TransportEvent,
)

LOGGER = logging.getLogger(__name__)

_BAD_SESSION_ERRORS = (errors.AuthKeyUnregisteredError, FatalSessionError)
_LOGGED_OUT_ERRORS = (
    errors.SessionRevokedError,
    errors.SessionExpiredError,
    errors.UserDeactivatedError,
    errors.UserDeactivatedBanError,
)


def classify_disconnect(exc: BaseException) -> DisconnectReason:
    """Map the error that ended a connection to a DisconnectReason."""

    if isinstance(exc, errors.AuthKeyDuplicatedError):
        return DisconnectReason.MULTI_DEVICE_MISMATCH
    if isinstance(exc, _BAD_SESSION_ERRORS):
        return DisconnectReason.BAD_SESSION
    if isinstance(exc, _LOGGED_OUT_ERRORS):
        return DisconnectReason.LOGGED_OUT
    if isinstance(exc, asyncio.TimeoutError):
        return DisconnectReason.TIMED_OUT
    return DisconnectReason.CONNECTION_LOST


def resolve_entity(recipient_id: str) -> Union[int, str]:
    """Turn a normalized recipient id into something send_message accepts."""

    if recipient_id.startswith("chat_id:"):
        return int(recipient_id.split("chat_id:", 1)[1])
    # "@username" and "+phone" strings are resolved by Telethon itself.
    return recipient_id


def sender_key(event) -> str:
    """Recipient-style id for the sender of an inbound message."""

    sender = getattr(event.message, "sender", None)
    username = getattr(sender, "username", None)
    if isinstance(username, str) and username:
        return f"@{username.lower()}"
    return f"chat_id:{event.chat_id}"


class TelethonTransport:
    """Telegram user-client transport with QR pairing."""

    def __init__(
        self,
        api_id: int,
        api_hash: str,
        password: Optional[str] = None,
        pairing_window: float = 120.0,
    ) -> None:
        self._api_id = api_id
        self._api_hash = api_hash
        self._password = password
        self._pairing_window = pairing_window
        self._client: Optional[TelegramClient] = None
        self._queue: Optional[asyncio.Queue] = None
        self._runner: Optional[asyncio.Task] = None
        self._closing = False

    async def connect(self, credentials: Optional[str]) -> AsyncIterator[TransportEvent]:
        self._closing = False
        self._queue = asyncio.Queue()
        self._client = TelegramClient(StringSession(credentials or None), self._api_id, self._api_hash)
        self._client.add_event_handler(self._on_new_message, events.NewMessage(incoming=True))
        self._runner = asyncio.create_task(self._run(self._client, self._queue), name="telethon-runner")
        return self._drain(self._queue)

    async def send(self, recipient_id: str, body: str) -> None:
        client = self._require_client()
        try:
            await client.send_message(resolve_entity(recipient_id), body)
        except errors.FloodWaitError as exc:
            raise TransportError(f"Flood wait of {exc.seconds}s", retry_after=float(exc.seconds), abuse_signal=True) from exc
        except errors.PeerFloodError as exc:
            raise TransportError("Account restricted for flooding", abuse_signal=True) from exc
        except (errors.RPCError, ConnectionError, ValueError) as exc:
            raise TransportError(str(exc)) from exc

    async def heartbeat(self) -> None:
        client = self._require_client()
        await client(functions.account.UpdateStatusRequest(offline=False))

    async def disconnect(self) -> None:
        self._closing = True
        client, self._client = self._client, None
        if client is not None:
            await client.disconnect()
        runner, self._runner = self._runner, None
        if runner is not None and not runner.done():
            runner.cancel()
            try:
                await runner
            except asyncio.CancelledError:
                pass

    async def logout(self) -> None:
        self._closing = True
        client = self._require_client()
        await client.log_out()

    async def _run(self, client: TelegramClient, queue: asyncio.Queue) -> None:
        queue.put_nowait(ConnectionUpdate(ConnectionState.CONNECTING))
        try:
            await client.connect()
            if not await client.is_user_authorized():
                await self._authorize_with_qr(client, queue)
            queue.put_nowait(CredentialsUpdate(client.session.save()))
            queue.put_nowait(ConnectionUpdate(ConnectionState.OPEN))
            await client.disconnected
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            reason = DisconnectReason.CONNECTION_CLOSED if self._closing else classify_disconnect(exc)
            queue.put_nowait(ConnectionUpdate(ConnectionState.CLOSED, reason=reason, detail=str(exc)))
        else:
            reason = DisconnectReason.CONNECTION_CLOSED if self._closing else DisconnectReason.CONNECTION_LOST
            queue.put_nowait(ConnectionUpdate(ConnectionState.CLOSED, reason=reason))
        finally:
            queue.put_nowait(None)

    async def _authorize_with_qr(self, client: TelegramClient, queue: asyncio.Queue) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._pairing_window
        qr = await client.qr_login()
        queue.put_nowait(PairingPayload(qr.url))
        while True:
            try:
                await qr.wait(timeout=max(1.0, deadline - loop.time()))
                return
            except asyncio.TimeoutError:
                # Telegram tokens rotate well inside the pairing window.
                if loop.time() >= deadline:
                    raise
                await qr.recreate()
                LOGGER.info("QR login token rotated")
                queue.put_nowait(PairingPayload(qr.url))
            except errors.SessionPasswordNeededError:
                if not self._password:
                    raise FatalSessionError("Two-step verification password required") from None
                LOGGER.info("Two-step verification required, signing in with password")
                await client.sign_in(password=self._password)
                return

    async def _drain(self, queue: asyncio.Queue) -> AsyncIterator[TransportEvent]:
        while True:
            event = await queue.get()
            if event is None:
                return
            yield event

    async def _on_new_message(self, event) -> None:
        if self._queue is None:
            return
        self._queue.put_nowait(
            InboundMessage(
                sender_id=sender_key(event),
                text=event.raw_text or "",
                received_at=event.message.date.timestamp() if event.message.date else 0.0,
            )
        )

    def _require_client(self) -> TelegramClient:
        if self._client is None:
            raise TransportError("Telegram client is not connected")
        return self._client
