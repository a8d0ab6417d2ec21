"""Batched broadcast on top of the single-send path."""

from __future__ import annotations

import asyncio
import hashlib
import logging
from typing import Awaitable, Callable, Dict, List, Sequence

from safesend.core.clock import Clock
from safesend.core.config import MessagingConfig
from safesend.core.errors import DeliveryError, NotConnectedError, RateLimitError, SecurityBlockedError, ValidationError
from safesend.core.models import BroadcastResult, OutboundMessage, QueuedMessage
from safesend.core.rate_limiter import RateLimiter
from safesend.core.security import SecurityMonitor
from safesend.core.validation import mask_recipient

LOGGER = logging.getLogger(__name__)

SendOne = Callable[[str, str], Awaitable[QueuedMessage]]


def partition(items: Sequence[OutboundMessage], size: int) -> List[List[OutboundMessage]]:
    """Split ``items`` into consecutive batches of at most ``size``."""

    return [list(items[i : i + size]) for i in range(0, len(items), size)]


class BroadcastOrchestrator:
    """Feeds recipients through the same admission gates as a single send.

    Batches are strictly sequential: every delivery of a batch settles
    before the inter-batch pause, so batches never overlap on the wire.
    """

    def __init__(
        self,
        config: MessagingConfig,
        send_one: SendOne,
        limiter: RateLimiter,
        monitor: SecurityMonitor,
        is_open: Callable[[], bool],
        clock: Clock,
    ) -> None:
        self._config = config
        self._send_one = send_one
        self._limiter = limiter
        self._monitor = monitor
        self._is_open = is_open
        self._clock = clock
        self._recent: Dict[str, float] = {}

    async def broadcast(self, recipient_ids: Sequence[str], body: str) -> BroadcastResult:
        messages = [OutboundMessage(recipient_id=recipient, body=body) for recipient in recipient_ids]
        return await self.send_batch(messages)

    async def send_batch(self, messages: Sequence[OutboundMessage]) -> BroadcastResult:
        """Send per-recipient messages in batches and tally the outcome."""

        if self._monitor.is_suspicious():
            raise SecurityBlockedError(
                "Broadcast blocked due to suspicious activity",
                cooldown_remaining=self._monitor.cooldown_remaining(),
            )
        if not self._is_open():
            raise NotConnectedError("Transport is not connected")
        self._validate(messages)
        self._check_cooldown(messages)

        batches = partition(messages, self._config.broadcast_batch_size)
        LOGGER.info("Starting broadcast to %s recipients in %s batches", len(messages), len(batches))

        success = 0
        failed = 0
        for index, batch in enumerate(batches, start=1):
            admitted: List[QueuedMessage] = []
            for message in batch:
                await self._clock.sleep(self._limiter.interval_remaining())
                try:
                    admitted.append(await self._send_one(message.recipient_id, message.body))
                except DeliveryError as exc:
                    LOGGER.warning("Broadcast to %s rejected: %s", mask_recipient(message.recipient_id), exc)
                    failed += 1

            outcomes = await asyncio.gather(*(item.outcome for item in admitted if item.outcome is not None))
            success += sum(1 for delivered in outcomes if delivered)
            failed += sum(1 for delivered in outcomes if not delivered)
            LOGGER.info("Batch %s/%s done (success=%s, failed=%s)", index, len(batches), success, failed)

            if index < len(batches):
                LOGGER.info("Waiting %.0fs before next batch", self._config.broadcast_batch_delay)
                await self._clock.sleep(self._config.broadcast_batch_delay)

        return BroadcastResult(success_count=success, failed_count=failed)

    def _validate(self, messages: Sequence[OutboundMessage]) -> None:
        if not messages:
            raise ValidationError("No recipients to send to")
        if len(messages) > self._config.max_broadcast_recipients:
            raise ValidationError(
                f"At most {self._config.max_broadcast_recipients} recipients per broadcast"
            )

    def _check_cooldown(self, messages: Sequence[OutboundMessage]) -> None:
        now = self._clock.now()
        cooldown = self._config.broadcast_cooldown
        for key, sent_at in list(self._recent.items()):
            if now - sent_at >= cooldown:
                del self._recent[key]

        key = hashlib.sha256(",".join(sorted(m.recipient_id for m in messages)).encode("utf-8")).hexdigest()
        sent_at = self._recent.get(key)
        if sent_at is not None:
            remaining = cooldown - (now - sent_at)
            raise RateLimitError("The same broadcast was sent recently", retry_after=remaining)
        self._recent[key] = now
