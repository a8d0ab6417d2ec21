"""Scoped one-shot and periodic timers on top of asyncio tasks."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Union

from safesend.core.clock import Clock

LOGGER = logging.getLogger(__name__)

TimerCallback = Callable[[], Union[None, Awaitable[Any]]]


class ScopedTimer:
    """Holds at most one live task for a single purpose.

    Arming a timer cancels the previous one first, so two timers of the same
    purpose can never be live at once. Cancelling from inside the timer's own
    callback only detaches the task; the callback runs to completion.
    """

    def __init__(self, name: str, clock: Clock) -> None:
        self.name = name
        self._clock = clock
        self._task: Optional[asyncio.Task] = None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def arm(self, delay: float, callback: TimerCallback) -> None:
        """Run ``callback`` once after ``delay`` seconds."""

        self.cancel()
        self._task = asyncio.create_task(self._run_once(delay, callback), name=f"timer:{self.name}")

    def arm_periodic(self, period: float, callback: TimerCallback) -> None:
        """Run ``callback`` every ``period`` seconds until cancelled."""

        self.cancel()
        self._task = asyncio.create_task(self._run_periodic(period, callback), name=f"timer:{self.name}")

    def cancel(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        if task is asyncio.current_task():
            return
        task.cancel()

    async def _run_once(self, delay: float, callback: TimerCallback) -> None:
        await self._clock.sleep(delay)
        me = asyncio.current_task()
        await self._invoke(callback)
        if self._task is me:
            self._task = None

    async def _run_periodic(self, period: float, callback: TimerCallback) -> None:
        me = asyncio.current_task()
        while self._task is me:
            await self._clock.sleep(period)
            await self._invoke(callback)

    async def _invoke(self, callback: TimerCallback) -> None:
        try:
            result = callback()
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception:
            LOGGER.exception("Timer %s callback failed", self.name)
