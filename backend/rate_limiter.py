"""Per-user rate limiting for AI calls."""

import asyncio
import math
from datetime import datetime, timedelta
from typing import Callable, Tuple

from backend.cache import utc_now
from backend.config import (
    RATE_LIMIT_ENABLED,
    AI_RATE_LIMIT_PER_MINUTE,
    AI_RATE_LIMIT_PER_DAY,
    RATE_LIMIT_STORE_TIMEOUT_SECONDS,
)
from backend.counter_store import CounterStore
from backend.logger import logger
from backend.models import WindowType
from backend.schemas import RateLimitResult, RateLimitStatus, WindowUsage


def window_start(now: datetime, window_type: WindowType) -> datetime:
    """Floor `now` to the start of its minute or day."""
    if window_type is WindowType.MINUTE:
        return now.replace(second=0, microsecond=0)
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def next_window_start(now: datetime, window_type: WindowType) -> datetime:
    step = timedelta(minutes=1) if window_type is WindowType.MINUTE else timedelta(days=1)
    return window_start(now, window_type) + step


class AIRateLimiter:
    """
    Per-user quota on AI calls over two fixed windows (minute and day).

    `check_rate_limit` only reads counters; `increment_rate_limit` is called
    after the AI call has been issued, so a rejected check never uses quota.

    Failure policy: the limiter fails open. If the counter store raises or
    times out, the check allows the request and the increment is dropped.
    This guards cost, not access, so availability of the AI features wins.
    """

    def __init__(
        self,
        store: CounterStore,
        minute_limit: int = AI_RATE_LIMIT_PER_MINUTE,
        day_limit: int = AI_RATE_LIMIT_PER_DAY,
        enabled: bool = RATE_LIMIT_ENABLED,
        timeout_seconds: float = RATE_LIMIT_STORE_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.minute_limit = minute_limit
        self.day_limit = day_limit
        self.enabled = enabled
        self.timeout_seconds = timeout_seconds
        self._clock = clock

    async def check_rate_limit(self, user_id: str) -> RateLimitResult:
        """
        Check whether `user_id` may make another AI call now.

        Args:
            user_id: Caller identity

        Returns:
            RateLimitResult; when not allowed it carries reset_time,
            retry_after_seconds and a message that can be shown as-is.
        """
        if not self.enabled:
            return RateLimitResult(allowed=True)

        now = self._clock()
        try:
            minute_count, day_count = await self._read_counts(user_id, now)
        except Exception as e:
            logger.error(f"Rate limit check failed for user {user_id}, allowing request: {e}", exc_info=True)
            return RateLimitResult(allowed=True)

        if minute_count >= self.minute_limit:
            reset_time = next_window_start(now, WindowType.MINUTE)
            wait_seconds = math.ceil((reset_time - now).total_seconds())
            logger.warning(f"Minute AI rate limit exceeded for user {user_id}: {minute_count}/{self.minute_limit}")
            return RateLimitResult(
                allowed=False,
                remaining=0,
                reset_time=reset_time,
                retry_after_seconds=wait_seconds,
                error=(
                    f"Rate limit exceeded. You can make {self.minute_limit} requests per minute. "
                    f"Please try again in {wait_seconds} seconds."
                ),
            )

        if day_count >= self.day_limit:
            reset_time = next_window_start(now, WindowType.DAY)
            logger.warning(f"Daily AI rate limit exceeded for user {user_id}: {day_count}/{self.day_limit}")
            return RateLimitResult(
                allowed=False,
                remaining=0,
                reset_time=reset_time,
                retry_after_seconds=math.ceil((reset_time - now).total_seconds()),
                error=(
                    f"Daily rate limit exceeded. You can make {self.day_limit} requests per day. "
                    "Please try again tomorrow."
                ),
            )

        return RateLimitResult(
            allowed=True,
            remaining=min(self.minute_limit - minute_count, self.day_limit - day_count),
        )

    async def increment_rate_limit(self, user_id: str) -> None:
        """Record one AI call against both of the user's current windows."""
        if not self.enabled:
            return

        now = self._clock()
        for window_type in (WindowType.MINUTE, WindowType.DAY):
            try:
                await self._call_store(self.store.increment, user_id, window_type, window_start(now, window_type))
            except Exception as e:
                logger.error(
                    f"Failed to increment {window_type.value} rate limit for user {user_id}: {e}",
                    exc_info=True,
                )

    async def get_rate_limit_status(self, user_id: str) -> RateLimitStatus:
        """Current usage for both windows; reports zero usage if the store is unavailable."""
        try:
            minute_used, day_used = await self._read_counts(user_id, self._clock())
        except Exception as e:
            logger.error(f"Failed to read rate limit status for user {user_id}: {e}", exc_info=True)
            minute_used, day_used = 0, 0

        return RateLimitStatus(
            minute=WindowUsage(
                used=minute_used,
                limit=self.minute_limit,
                remaining=max(0, self.minute_limit - minute_used),
            ),
            day=WindowUsage(
                used=day_used,
                limit=self.day_limit,
                remaining=max(0, self.day_limit - day_used),
            ),
        )

    async def _read_counts(self, user_id: str, now: datetime) -> Tuple[int, int]:
        minute_count = await self._call_store(
            self.store.get_count, user_id, WindowType.MINUTE, window_start(now, WindowType.MINUTE)
        )
        day_count = await self._call_store(
            self.store.get_count, user_id, WindowType.DAY, window_start(now, WindowType.DAY)
        )
        return minute_count, day_count

    async def _call_store(self, fn, *args):
        # Store clients are blocking; keep them off the event loop
        return await asyncio.wait_for(asyncio.to_thread(fn, *args), timeout=self.timeout_seconds)
