"""Delivery queue and its single background processor.

This module is transport-agnostic. It receives a ``send`` coroutine from the
connection manager, so the transport handle is never touched directly.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Awaitable, Callable, Deque, Optional

from safesend.core.clock import Clock
from safesend.core.config import MessagingConfig
from safesend.core.dedup import DedupStore, compute_fingerprint
from safesend.core.errors import DuplicateMessageError, NotConnectedError, TransportError
from safesend.core.models import QueuedMessage
from safesend.core.rate_limiter import RateLimiter
from safesend.core.security import SecurityMonitor
from safesend.core.validation import mask_recipient

LOGGER = logging.getLogger(__name__)

SendFn = Callable[[str, str], Awaitable[None]]


class DeliveryQueue:
    """Orchestrates admission, ordering, spacing and retries of sends."""

    def __init__(
        self,
        config: MessagingConfig,
        send: SendFn,
        dedup: DedupStore,
        limiter: RateLimiter,
        monitor: SecurityMonitor,
        clock: Clock,
    ) -> None:
        self._config = config
        self._send = send
        self._dedup = dedup
        self._limiter = limiter
        self._monitor = monitor
        self._clock = clock
        self._queue: Deque[QueuedMessage] = deque()
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._in_flight: Optional[QueuedMessage] = None
        self._idle = asyncio.Event()
        self._idle.set()
        self.sent_count = 0
        self.failed_count = 0

    @property
    def pending(self) -> int:
        return len(self._queue)

    @property
    def running(self) -> bool:
        return self._running

    def enqueue(self, recipient_id: str, body: str) -> QueuedMessage:
        """Admit one message through dedup and the rate limiter.

        Rejections raise before the queue is touched.
        """

        fingerprint = compute_fingerprint(recipient_id, body)
        # Dedup runs first so a duplicate never consumes rate quota.
        if self._dedup.is_seen(fingerprint) or self._is_pending(fingerprint):
            raise DuplicateMessageError(f"Duplicate message for {mask_recipient(recipient_id)}")
        self._limiter.acquire(recipient_id)

        item = QueuedMessage(
            recipient_id=recipient_id,
            body=body,
            enqueued_at=self._clock.now(),
            fingerprint=fingerprint,
            outcome=asyncio.get_running_loop().create_future(),
        )
        self._queue.append(item)
        self._idle.clear()
        LOGGER.info("Queued message for %s (pending=%s)", mask_recipient(recipient_id), len(self._queue))
        self.ensure_processor()
        return item

    def ensure_processor(self) -> None:
        """Start the processor if it is idle and work is waiting."""

        if self._running or not self._queue:
            return
        self._running = True
        self._idle.clear()
        self._task = asyncio.create_task(self._process(), name="delivery-processor")

    def clear(self) -> int:
        """Stop the processor and drop every pending and in-flight item."""

        task, self._task = self._task, None
        in_flight, self._in_flight = self._in_flight, None
        if in_flight is not None:
            in_flight.resolve(False)
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self._running = False
        dropped = len(self._queue) + (1 if in_flight is not None else 0)
        while self._queue:
            self._queue.popleft().resolve(False)
        self._idle.set()
        if dropped:
            LOGGER.info("Cleared %s pending messages", dropped)
        return dropped

    async def join(self) -> None:
        """Wait until the queue is empty and the processor has exited."""

        await self._idle.wait()

    async def _process(self) -> None:
        try:
            while self._queue:
                item = self._queue.popleft()
                self._in_flight = item
                try:
                    await self._send(item.recipient_id, item.body)
                except NotConnectedError:
                    # Connection dropped; keep the item and resume on reopen.
                    self._queue.appendleft(item)
                    LOGGER.info("Connection not open; pausing delivery with %s pending", len(self._queue))
                    return
                except TransportError as exc:
                    self._in_flight = None
                    await self._handle_failure(item, exc)
                    continue
                finally:
                    self._in_flight = None

                self._dedup.mark_seen(item.fingerprint)
                self.sent_count += 1
                item.resolve(True)
                LOGGER.info("Message sent to %s", mask_recipient(item.recipient_id))
                await self._clock.sleep(self._config.min_message_interval)
        finally:
            if self._task is asyncio.current_task():
                self._task = None
                self._running = False
                if not self._queue:
                    self._idle.set()

    async def _handle_failure(self, item: QueuedMessage, exc: TransportError) -> None:
        LOGGER.warning("Failed to send message to %s: %s", mask_recipient(item.recipient_id), exc)
        if exc.abuse_signal:
            self._monitor.record_violation(f"Transport pushed back: {exc}")

        if item.retry_count < self._config.max_send_retries:
            item.retry_count += 1
            # Retried items keep priority over newer ones.
            self._queue.appendleft(item)
            wait = self._config.retry_backoff * item.retry_count
            if exc.retry_after:
                wait = max(wait, exc.retry_after)
            LOGGER.info("Retry %s for %s in %.0fs", item.retry_count, mask_recipient(item.recipient_id), wait)
            await self._clock.sleep(wait)
            return

        self.failed_count += 1
        item.resolve(False)
        self._monitor.record_attempt("message dropped after retries")
        LOGGER.error("Dropped message to %s after %s retries", mask_recipient(item.recipient_id), item.retry_count)

    def _is_pending(self, fingerprint: str) -> bool:
        if self._in_flight is not None and self._in_flight.fingerprint == fingerprint:
            return True
        return any(item.fingerprint == fingerprint for item in self._queue)
