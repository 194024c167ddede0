"""Adaptive per-destination throttle with shared recovery state."""

import asyncio
import hashlib
import time
import uuid
from typing import Any, Callable, Dict, Optional, Protocol, Tuple
from urllib.parse import urlparse

from elementa.destination.rate_limiter import RateLimiter
from elementa.destination.state_store import StateStore
from elementa.models.data_models import ThrottleState
from elementa.monitoring.logger import StructuredLogger

BATCH_SIZE_CAS_ATTEMPTS = 5


class Clock(Protocol):
    """Clock interface for testable time management."""

    def now(self) -> float:
        """Return current time in seconds."""
        ...


class MonotonicClock:
    """Default clock implementation using time.monotonic."""

    def now(self) -> float:
        return time.monotonic()


def destination_key(url: str) -> str:
    """Stable destination identifier: md5 of the host name."""
    host = urlparse(url).hostname if "//" in url else url
    return hashlib.md5((host or url).encode("utf-8")).hexdigest()


class AdaptiveThrottle:
    """
    Admission control and distress handling for destination sites.

    States per destination:
    - Normal: requests admitted under a token bucket (admission_limit per
      admission_window), both overridable through the shared store
    - Recovering: entered on a 5xx or timeout; every admission waits
      recovery_time first. Further failures escalate recovery_time by the
      multiplier up to the cap.

    Every failure also halves the destination's batch size (floor
    min_batch_size). Nothing here grows it back; only an operator reset
    does. Recovery ends when the recovering flag expires, never on an
    observed success.

    All state lives in the StateStore so every worker sees it. Reads and
    writes are last-write-wins except batch size halving, which uses
    compare_and_set with a bounded retry.
    """

    def __init__(
        self,
        store: StateStore,
        limiter: Optional[RateLimiter] = None,
        logger: Optional[StructuredLogger] = None,
        clock: Optional[Clock] = None,
        sleeper: Callable[[float], Any] = asyncio.sleep,
        default_batch_size: int = 25,
        min_batch_size: int = 5,
        max_reset_batch_size: int = 50,
        initial_recovery_time: float = 60.0,
        recovery_multiplier: float = 1.5,
        max_recovery_time: float = 300.0,
        recovery_window: float = 60.0,
        state_ttl: float = 86400.0,
        admission_limit: int = 120,
        admission_window: float = 60.0,
    ):
        self.store = store
        self.limiter = limiter or RateLimiter(limit=admission_limit, window=admission_window)
        self.logger = logger or StructuredLogger()
        self.clock = clock or MonotonicClock()
        self._sleep = sleeper
        self.default_batch_size = default_batch_size
        self.min_batch_size = min_batch_size
        self.max_reset_batch_size = max_reset_batch_size
        self.initial_recovery_time = initial_recovery_time
        self.recovery_multiplier = recovery_multiplier
        self.max_recovery_time = max_recovery_time
        self.recovery_window = recovery_window
        self.state_ttl = state_ttl
        self.admission_limit = admission_limit
        self.admission_window = admission_window
        self._in_flight: Dict[str, Tuple[str, float]] = {}

    @classmethod
    def from_config(cls, config, store: StateStore, **kwargs) -> "AdaptiveThrottle":
        return cls(
            store,
            default_batch_size=config.default_batch_size,
            min_batch_size=config.min_batch_size,
            max_reset_batch_size=config.max_reset_batch_size,
            initial_recovery_time=config.initial_recovery_time,
            recovery_multiplier=config.recovery_multiplier,
            max_recovery_time=config.max_recovery_time,
            recovery_window=config.recovery_window,
            state_ttl=config.state_ttl,
            admission_limit=config.admission_limit,
            admission_window=config.admission_window,
            **kwargs,
        )

    # Shared state keys
    @staticmethod
    def _recovering_key(destination: str) -> str:
        return f"timeout_recovery:{destination}"

    @staticmethod
    def _recovery_time_key(destination: str) -> str:
        return f"timeout_recovery_time:{destination}"

    @staticmethod
    def _batch_size_key(destination: str) -> str:
        return f"batch_size:{destination}"

    @staticmethod
    def _limit_key(destination: str) -> str:
        return f"rate_limit:{destination}:limit"

    @staticmethod
    def _window_key(destination: str) -> str:
        return f"rate_limit:{destination}:window"

    async def admit(self, destination: str) -> str:
        """
        Wait until a request to destination may be sent.

        Blocks for recovery_time while the destination is recovering, then
        takes an admission token.

        Returns:
            Request id to pass to observe()
        """
        if await self.store.get(self._recovering_key(destination), False):
            recovery_time = await self.store.get(
                self._recovery_time_key(destination), self.initial_recovery_time
            )
            self.logger.recovery_wait(destination, recovery_time)
            await self._sleep(recovery_time)

        limit, window = await self._admission_params(destination)
        await self.limiter.acquire(destination, limit, window)

        request_id = uuid.uuid4().hex
        self._in_flight[request_id] = (destination, self.clock.now())
        return request_id

    async def observe(
        self,
        destination: str,
        request_id: str,
        status_code: Optional[int] = None,
        timed_out: bool = False,
    ) -> bool:
        """
        Record the response to an admitted request.

        Failure handling fires at most once per request id.

        Returns:
            True if the response was treated as destination distress
        """
        entry = self._in_flight.pop(request_id, None)
        if entry is None:
            return False

        distressed = timed_out or (status_code is not None and status_code >= 500)
        if not distressed:
            return False

        _, started_at = entry
        self.logger.destination_distress(
            destination, status_code, timed_out,
            elapsed_ms=round((self.clock.now() - started_at) * 1000, 2),
        )
        await self._enter_recovery(destination)
        await self._reduce_batch_size(destination)
        return True

    def release(self, request_id: str) -> None:
        """Forget an admitted request whose outcome was never observed."""
        self._in_flight.pop(request_id, None)

    async def _enter_recovery(self, destination: str) -> None:
        previous = await self.store.get(self._recovery_time_key(destination))
        if previous is None:
            recovery_time = self.initial_recovery_time
        else:
            recovery_time = min(self.max_recovery_time, previous * self.recovery_multiplier)

        await self.store.set(self._recovering_key(destination), True, ttl=self.recovery_window)
        await self.store.set(self._recovery_time_key(destination), recovery_time, ttl=self.state_ttl)

    async def _reduce_batch_size(self, destination: str) -> int:
        key = self._batch_size_key(destination)
        for _ in range(BATCH_SIZE_CAS_ATTEMPTS):
            stored = await self.store.get(key)
            current = stored if stored is not None else self.default_batch_size
            new_size = max(self.min_batch_size, int(current * 0.5))
            if new_size >= current:
                return current
            if await self.store.compare_and_set(key, stored, new_size, ttl=self.state_ttl):
                self.logger.batch_size_reduced(destination, current, new_size)
                return new_size

        # Contended; fall back to last-write-wins
        current = await self.store.get(key, self.default_batch_size)
        new_size = max(self.min_batch_size, int(current * 0.5))
        await self.store.set(key, new_size, ttl=self.state_ttl)
        self.logger.batch_size_reduced(destination, current, new_size)
        return new_size

    async def _admission_params(self, destination: str) -> Tuple[int, float]:
        limit = await self.store.get(self._limit_key(destination), self.admission_limit)
        window = await self.store.get(self._window_key(destination), self.admission_window)
        return int(limit), float(window)

    async def batch_size(self, destination: str) -> int:
        return int(await self.store.get(self._batch_size_key(destination), self.default_batch_size))

    async def state(self, destination: str) -> ThrottleState:
        limit, window = await self._admission_params(destination)
        return ThrottleState(
            destination=destination,
            recovering=bool(await self.store.get(self._recovering_key(destination), False)),
            recovery_time=float(await self.store.get(
                self._recovery_time_key(destination), self.initial_recovery_time
            )),
            batch_size=await self.batch_size(destination),
            admission_limit=limit,
            admission_window=window,
        )

    async def set_admission_limit(
        self, destination: str, limit: int, window: Optional[float] = None
    ) -> None:
        """External control signal: override the admission rate."""
        await self.store.set(self._limit_key(destination), int(limit))
        if window is not None:
            await self.store.set(self._window_key(destination), float(window))

    async def reset(self, destination: str, batch_size: Optional[int] = None) -> ThrottleState:
        """
        Operator reset: clear recovery state and optionally set batch size.

        The batch size is clamped to [min_batch_size, max_reset_batch_size].
        """
        await self.store.delete(self._recovering_key(destination))
        await self.store.delete(self._recovery_time_key(destination))
        if batch_size is None:
            await self.store.delete(self._batch_size_key(destination))
        else:
            clamped = max(self.min_batch_size, min(self.max_reset_batch_size, int(batch_size)))
            await self.store.set(self._batch_size_key(destination), clamped, ttl=self.state_ttl)
        self.logger.log("throttle_reset", destination=destination, batch_size=batch_size)
        return await self.state(destination)
