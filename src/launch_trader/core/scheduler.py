"""
Cancellable timers for window expiry.

Every timer is an asyncio task keyed by asset. Timers can be replaced,
cancelled individually or all at once on shutdown, so a window torn down
early never leaves a stray timer behind.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict

logger = logging.getLogger(__name__)

TimerCallback = Callable[[str], None]


class WindowScheduler:
    """
    Runs a synchronous callback for a key after a delay.

    Usage:
        scheduler = WindowScheduler()
        scheduler.schedule("mint_abc", 20.0, engine.on_window_expired)
        ...
        scheduler.cancel("mint_abc")
        scheduler.cancel_all()
    """

    def __init__(self) -> None:
        self._timers: Dict[str, asyncio.Task] = {}

    @property
    def pending(self) -> int:
        """Number of timers that have not fired yet."""
        return len(self._timers)

    def is_scheduled(self, key: str) -> bool:
        return key in self._timers

    def schedule(self, key: str, delay: float, callback: TimerCallback) -> None:
        """
        Schedule `callback(key)` to run after `delay` seconds.

        Re-scheduling a key replaces its previous timer. Must be called
        from within a running event loop.
        """
        self.cancel(key)
        task = asyncio.get_running_loop().create_task(
            self._fire(key, max(0.0, delay), callback),
            name=f"window:{key}",
        )
        self._timers[key] = task

    def cancel(self, key: str) -> bool:
        """Cancel the timer for `key`. Returns True if one was pending."""
        task = self._timers.pop(key, None)
        if task is None:
            return False
        if task is not asyncio.current_task():
            task.cancel()
        return True

    def cancel_all(self) -> int:
        """Cancel every pending timer. Returns how many were cancelled."""
        keys = list(self._timers)
        for key in keys:
            self.cancel(key)
        if keys:
            logger.info(f"Cancelled {len(keys)} pending window timers")
        return len(keys)

    async def _fire(self, key: str, delay: float, callback: TimerCallback) -> None:
        await asyncio.sleep(delay)
        # Drop our entry before running so the callback may reschedule the key
        if self._timers.get(key) is asyncio.current_task():
            del self._timers[key]
        try:
            callback(key)
        except Exception:
            logger.exception(f"Timer callback failed for {key}")
