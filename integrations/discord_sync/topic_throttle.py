"""
Channel topic throttle

Discord only allows a couple of topic edits per channel every few minutes.
The throttle applies a change immediately when the cooldown has passed;
otherwise it keeps the newest value as pending and arms a single timer for
the remaining cooldown. Intermediate values are never applied.
"""

import logging
import asyncio
import time
from typing import Awaitable, Callable, Dict, Any, Optional

logger = logging.getLogger('integrations.discord_sync.topic_throttle')


class TopicThrottle:
    """Current/pending topic pair for one channel"""

    def __init__(self, apply: Callable[[str], Awaitable[None]], cooldown: float,
                 clock: Callable[[], float] = time.monotonic):
        """
        Args:
            apply: Coroutine function performing the actual topic edit
            cooldown: Minimum seconds between two applied changes
            clock: Monotonic clock, replaceable in tests
        """
        self._apply = apply
        self.cooldown = cooldown
        self._clock = clock

        self.current: Optional[str] = None
        self.pending: Optional[str] = None
        self._last_applied: Optional[float] = None
        self._timer: Optional[asyncio.Task] = None

        self._stats = {
            'requested': 0,
            'applied': 0,
            'failed': 0
        }

    @property
    def timer_armed(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def remaining_cooldown(self) -> float:
        if self._last_applied is None:
            return 0.0
        return max(0.0, self.cooldown - (self._clock() - self._last_applied))

    async def request(self, value: str) -> bool:
        """
        Ask for a new topic.

        Returns:
            True if the value was applied right away
        """
        self._stats['requested'] += 1

        if value == self.current:
            # A change back to what is already shown cancels any pending one
            self.pending = None
            return False

        self.pending = value
        if self.timer_armed:
            return False

        remaining = self.remaining_cooldown()
        if remaining > 0:
            logger.debug(f"Topic change deferred for {remaining:.0f}s")
            self._timer = asyncio.create_task(self._apply_after(remaining))
            return False

        await self._apply_pending()
        return True

    async def force(self, value: str, timeout: float) -> bool:
        """Apply a value now, ignoring the cooldown, waiting at most ``timeout``"""
        self.cancel()
        self.pending = value
        try:
            await asyncio.wait_for(self._apply_pending(), timeout=timeout)
            return self.current == value
        except asyncio.TimeoutError:
            logger.warning(f"Topic update did not finish within {timeout}s")
            return False

    def cancel(self) -> None:
        """Disarm the cooldown timer, keeping the pending value"""
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self._stats,
            'current': self.current,
            'pending': self.pending,
            'timer_armed': self.timer_armed
        }

    async def _apply_after(self, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
        except asyncio.CancelledError:
            return
        self._timer = None
        await self._apply_pending()

    async def _apply_pending(self) -> None:
        value = self.pending
        self.pending = None
        if value is None or value == self.current:
            return

        self._last_applied = self._clock()
        try:
            await self._apply(value)
            self.current = value
            self._stats['applied'] += 1
            logger.info(f"Topic updated: {value!r}")
        except Exception as e:
            self._stats['failed'] += 1
            logger.warning(f"Topic update failed: {e}")
