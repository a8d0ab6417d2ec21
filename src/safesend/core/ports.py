"""Ports (interfaces) used by the core.

Ports define the minimal contracts for the chat transport and the credential
store so that the core can be reused with different backends.
"""

from __future__ import annotations

from typing import AsyncIterator, Optional, Protocol

from safesend.core.models import TransportEvent


class TransportPort(Protocol):
    """Chat transport operations required by the connection manager."""

    async def connect(self, credentials: Optional[str]) -> AsyncIterator[TransportEvent]:
        """Start a connection and return its event stream.

        The stream ends after the transport reports a close.
        """
        ...

    async def send(self, recipient_id: str, body: str) -> None:
        """Deliver one text message; raises TransportError on failure."""
        ...

    async def heartbeat(self) -> None:
        """Lightweight presence call that keeps the session warm."""
        ...

    async def disconnect(self) -> None:
        ...

    async def logout(self) -> None:
        ...


class CredentialStorePort(Protocol):
    """Persisted transport credentials as an opaque blob."""

    def load(self) -> Optional[str]:
        ...

    def save(self, blob: str) -> None:
        ...

    def clear(self) -> None:
        ...
