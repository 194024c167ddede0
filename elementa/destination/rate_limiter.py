"""Admission limiter implementation using token bucket algorithm."""

import asyncio
import time
from typing import Any, Callable, Dict, Optional, Tuple


class RateLimiter:
    """Token bucket rate limiter for controlling request admission per destination.

    Bucket capacity is ``limit`` tokens, refilled at ``limit / window`` tokens
    per second. The parameters may be passed on each acquire so that limits
    written to shared state by an external monitor take effect on the next
    request. When tokens are unavailable, the caller sleeps and retries.
    """

    def __init__(
        self,
        limit: int = 120,
        window: float = 60.0,
        retry_sleep: float = 0.05,
        now: Callable[[], float] = time.monotonic,
        sleeper: Callable[[float], Any] = asyncio.sleep,
    ):
        """Initialize rate limiter with token bucket parameters.

        Args:
            limit: Requests admitted per window (default: 120)
            window: Window length in seconds (default: 60.0)
            retry_sleep: Sleep duration when tokens unavailable (default: 0.05s)
            now: Clock function for time operations (default: time.monotonic)
            sleeper: Async sleep function (default: asyncio.sleep)
        """
        self.limit = limit
        self.window = window
        self.retry_sleep = retry_sleep
        self._now = now
        self._sleep = sleeper

        # Per-destination buckets: {destination: (tokens, last_refill_time)}
        self._buckets: Dict[str, Tuple[float, float]] = {}
        self._lock = asyncio.Lock()

    def _params(self, limit: Optional[int], window: Optional[float]) -> Tuple[int, float]:
        limit = limit if limit and limit > 0 else self.limit
        window = window if window and window > 0 else self.window
        return limit, window

    async def acquire(
        self,
        destination: str,
        limit: Optional[int] = None,
        window: Optional[float] = None,
    ) -> None:
        """Acquire a token for the specified destination.

        Blocks until a token is available.

        Args:
            destination: The destination identifier
            limit: Override for requests per window
            window: Override for the window length in seconds
        """
        limit, window = self._params(limit, window)
        while True:
            async with self._lock:
                tokens, last_refill = self._get_bucket_state(destination, limit, window)

                if tokens >= 1.0:
                    self._buckets[destination] = (tokens - 1.0, last_refill)
                    return

            await self._sleep(self.retry_sleep)

    def tokens_available(
        self,
        destination: str,
        limit: Optional[int] = None,
        window: Optional[float] = None,
    ) -> int:
        """Number of tokens currently available for a destination (floored)."""
        limit, window = self._params(limit, window)
        tokens, _ = self._get_bucket_state(destination, limit, window)
        return int(tokens)

    def reset(self, destination: str) -> None:
        self._buckets.pop(destination, None)

    def _get_bucket_state(self, destination: str, limit: int, window: float) -> Tuple[float, float]:
        """Get current bucket state with token refill calculation."""
        current_time = self._now()

        if destination not in self._buckets:
            self._buckets[destination] = (float(limit), current_time)
            return (float(limit), current_time)

        tokens, last_refill = self._buckets[destination]

        tokens_to_add = (current_time - last_refill) * (limit / window)
        # A lowered limit also shrinks the bucket
        new_tokens = min(float(limit), tokens + tokens_to_add)

        self._buckets[destination] = (new_tokens, current_time)
        return (new_tokens, current_time)
