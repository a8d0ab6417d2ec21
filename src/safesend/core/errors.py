"""Error taxonomy for outbound delivery.

``retryable`` tells the application layer whether a rejection is a
temporary block (retry later) or final for the given input.
"""

from __future__ import annotations

from typing import Optional


class DeliveryError(Exception):
    """Base class for every error raised by the messaging layer."""

    retryable = False


class ValidationError(DeliveryError):
    """Malformed recipient id or unacceptable message body."""


class DuplicateMessageError(DeliveryError):
    """Identical content was already sent to this recipient recently."""


class RateLimitError(DeliveryError):
    """Admission refused by a rate ceiling or the minimum interval."""

    retryable = True

    def __init__(self, message: str, retry_after: float = 0.0) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class NotConnectedError(DeliveryError):
    """The transport connection is not open."""

    retryable = True


class SecurityBlockedError(DeliveryError):
    """Outbound activity is blocked while suspicious activity is flagged."""

    retryable = True

    def __init__(self, message: str, cooldown_remaining: float = 0.0) -> None:
        super().__init__(message)
        self.cooldown_remaining = cooldown_remaining


class TransportError(DeliveryError):
    """The transport failed an in-flight send.

    ``abuse_signal`` is set when the provider itself pushed back (flood
    waits, spam restrictions); ``retry_after`` carries its wait hint.
    """

    retryable = True

    def __init__(
        self,
        message: str,
        retry_after: Optional[float] = None,
        abuse_signal: bool = False,
    ) -> None:
        super().__init__(message)
        self.retry_after = retry_after
        self.abuse_signal = abuse_signal


class FatalSessionError(DeliveryError):
    """Stored credentials are unusable; a fresh pairing is required."""
