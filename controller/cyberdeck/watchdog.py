"""Single re-armable idle deadline for the kiosk."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Optional

logger = logging.getLogger(__name__)


class IdleWatchdog:
    """One outstanding deferred callback.

    ``arm`` always cancels the previous deadline before scheduling a new one,
    so at most one timer task exists at any time.
    """

    def __init__(self, on_expire: Callable[[], None], *, name: str = "idle-watchdog") -> None:
        self._on_expire = on_expire
        self._name = name
        self._task: Optional[asyncio.Task[None]] = None
        self._delay: Optional[float] = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def delay(self) -> Optional[float]:
        """Delay of the pending deadline, or None when nothing is armed."""
        return self._delay if self.pending else None

    def arm(self, delay_seconds: float) -> None:
        self.cancel()
        self._delay = delay_seconds
        self._task = asyncio.create_task(self._expire_after(delay_seconds), name=self._name)
        logger.debug("Watchdog armed for %.1fs", delay_seconds)

    def cancel(self) -> None:
        task = self._task
        self._task = None
        self._delay = None
        if task and not task.done():
            task.cancel()
            logger.debug("Watchdog cancelled")

    async def _expire_after(self, delay_seconds: float) -> None:
        await asyncio.sleep(delay_seconds)
        # Detach first so the callback may re-arm or cancel without touching this task
        if self._task is asyncio.current_task():
            self._task = None
            self._delay = None
        logger.info("Watchdog fired after %.1fs", delay_seconds)
        try:
            self._on_expire()
        except Exception:
            logger.exception("Watchdog callback failed")


__all__ = ["IdleWatchdog"]
