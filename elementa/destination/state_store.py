"""Shared key-value store for per-destination throttle state.

Values are JSON-serialisable scalars. Writes are last-write-wins;
compare_and_set is the only atomic primitive.
"""

import json
import time
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

import redis.asyncio as aioredis


class StateStore(Protocol):
    """Contract for the shared throttle state store."""

    async def get(self, key: str, default: Any = None) -> Any:
        ...

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        ...

    async def delete(self, key: str) -> None:
        ...

    async def compare_and_set(
        self, key: str, expected: Any, value: Any, ttl: Optional[float] = None
    ) -> bool:
        """Write value only if the current value equals expected (None means absent)."""
        ...


class MemoryStateStore:
    """Single-process store with clock driven TTL expiry."""

    def __init__(self, now: Callable[[], float] = time.monotonic):
        self._now = now
        self._data: Dict[str, Tuple[Any, Optional[float]]] = {}

    def _live(self, key: str) -> Optional[Tuple[Any, Optional[float]]]:
        entry = self._data.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and self._now() >= expires_at:
            del self._data[key]
            return None
        return entry

    def _expiry(self, ttl: Optional[float]) -> Optional[float]:
        if ttl is None or ttl <= 0:
            return None
        return self._now() + ttl

    async def get(self, key: str, default: Any = None) -> Any:
        entry = self._live(key)
        return default if entry is None else entry[0]

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        self._data[key] = (value, self._expiry(ttl))

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def compare_and_set(
        self, key: str, expected: Any, value: Any, ttl: Optional[float] = None
    ) -> bool:
        entry = self._live(key)
        current = None if entry is None else entry[0]
        if current != expected:
            return False
        self._data[key] = (value, self._expiry(ttl))
        return True

    def keys(self):
        return [key for key in list(self._data) if self._live(key) is not None]


class RedisStateStore:
    """Store shared by every worker process through Redis."""

    _cas_lua: str = (
        "local current = redis.call('GET', KEYS[1])\n"
        "if ARGV[3] == '1' then\n"
        "  if current then\n"
        "    return 0\n"
        "  end\n"
        "elseif current ~= ARGV[1] then\n"
        "  return 0\n"
        "end\n"
        "local ttl = tonumber(ARGV[4])\n"
        "if ttl > 0 then\n"
        "  redis.call('SET', KEYS[1], ARGV[2], 'PX', ttl)\n"
        "else\n"
        "  redis.call('SET', KEYS[1], ARGV[2])\n"
        "end\n"
        "return 1\n"
    )

    def __init__(self, redis: aioredis.Redis, prefix: str = "elementa:"):
        self.redis = redis
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str, prefix: str = "elementa:") -> "RedisStateStore":
        return cls(aioredis.from_url(url), prefix=prefix)

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    @staticmethod
    def _ttl_ms(ttl: Optional[float]) -> int:
        if ttl is None or ttl <= 0:
            return 0
        return max(1, int(ttl * 1000))

    async def get(self, key: str, default: Any = None) -> Any:
        raw = await self.redis.get(self._key(key))
        if raw is None:
            return default
        return json.loads(raw)

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        ttl_ms = self._ttl_ms(ttl)
        if ttl_ms:
            await self.redis.set(self._key(key), json.dumps(value), px=ttl_ms)
        else:
            await self.redis.set(self._key(key), json.dumps(value))

    async def delete(self, key: str) -> None:
        await self.redis.delete(self._key(key))

    async def compare_and_set(
        self, key: str, expected: Any, value: Any, ttl: Optional[float] = None
    ) -> bool:
        expect_missing = "1" if expected is None else "0"
        result = await self.redis.eval(
            self._cas_lua,
            1,
            self._key(key),
            json.dumps(expected),
            json.dumps(value),
            expect_missing,
            self._ttl_ms(ttl),
        )
        return bool(result)

    async def aclose(self) -> None:
        await self.redis.aclose()


def create_state_store(redis_url: Optional[str] = None, now: Callable[[], float] = time.monotonic):
    """Redis-backed store when a URL is configured, in-memory otherwise."""
    if redis_url:
        return RedisStateStore.from_url(redis_url)
    return MemoryStateStore(now=now)
