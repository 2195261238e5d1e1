"""Rate limiter backends (in-memory and Redis)."""

from __future__ import annotations

import asyncio
import math
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol
from uuid import uuid4

from app.core.config import Settings, get_settings


class RateLimiter(Protocol):
    """Common contract for limiter backends."""

    async def acquire(
        self,
        key: str,
        *,
        max_requests: int,
        window_seconds: int,
        min_interval_seconds: int = 0,
        cooldown_seconds: int = 0,
        state_key: str | None = None,
    ) -> tuple[bool, int]:
        """Try to reserve one request; return (allowed, retry_after_seconds)."""

    async def clear(self) -> None:
        """Drop tracked counters (used in tests)."""


_REDIS_ACQUIRE_SCRIPT = """
local events_key = KEYS[1]
local state_key = KEYS[2]
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local limit = tonumber(ARGV[3])
local member = ARGV[4]
local min_interval = tonumber(ARGV[5])
local cooldown = tonumber(ARGV[6])

local cooldown_until = tonumber(redis.call('HGET', state_key, 'cooldown_until'))
if cooldown_until then
  if now < cooldown_until then
    return {0, tostring(cooldown_until - now)}
  end
  redis.call('DEL', events_key)
  redis.call('HDEL', state_key, 'cooldown_until', 'last_accepted')
end

local last_accepted = tonumber(redis.call('HGET', state_key, 'last_accepted'))
if last_accepted and (now - last_accepted) < min_interval then
  return {0, tostring(last_accepted + min_interval - now)}
end

redis.call('ZREMRANGEBYSCORE', events_key, '-inf', now - window)
local count = redis.call('ZCARD', events_key)
if count >= limit then
  local first = redis.call('ZRANGE', events_key, 0, 0, 'WITHSCORES')
  local wait = window
  if first[2] ~= nil then
    wait = tonumber(first[2]) + window - now
  end
  return {0, tostring(wait)}
end

redis.call('ZADD', events_key, now, member)
redis.call('HSET', state_key, 'last_accepted', tostring(now))
if count + 1 >= limit and cooldown > 0 then
  redis.call('DEL', events_key)
  redis.call('HSET', state_key, 'cooldown_until', tostring(now + cooldown))
end

local ttl = math.ceil(math.max(window, cooldown, min_interval)) + 1
redis.call('EXPIRE', events_key, ttl)
redis.call('EXPIRE', state_key, ttl)
return {1, '0'}
"""


@dataclass
class _KeyState:
    events: deque[float] = field(default_factory=deque)
    last_accepted: float | None = None
    cooldown_until: float | None = None
    expires_at: float = 0.0


_SWEEP_INTERVAL_SECONDS = 60.0


def _retry_after(seconds: float) -> int:
    return max(1, math.ceil(seconds))


class InMemorySlidingWindowRateLimiter:
    """Sliding-window limiter with minimum spacing and cooldown, per process.

    Keys whose window, spacing and cooldown have all lapsed are swept at most
    once a minute, so short-lived keys do not accumulate.
    """

    def __init__(self, now_provider: Callable[[], float] | None = None) -> None:
        self._states: dict[str, _KeyState] = {}
        self._lock = asyncio.Lock()
        self._now = now_provider
        self._next_sweep = float("-inf")

    def _current_time(self) -> float:
        if self._now is not None:
            return self._now()
        return asyncio.get_running_loop().time()

    @property
    def tracked_keys(self) -> int:
        return len(self._states)

    def _sweep(self, now: float) -> None:
        if now < self._next_sweep:
            return
        self._states = {key: state for key, state in self._states.items() if state.expires_at > now}
        self._next_sweep = now + _SWEEP_INTERVAL_SECONDS

    async def acquire(
        self,
        key: str,
        *,
        max_requests: int,
        window_seconds: int,
        min_interval_seconds: int = 0,
        cooldown_seconds: int = 0,
        state_key: str | None = None,
    ) -> tuple[bool, int]:
        """Try to reserve one request in the time window.

        Spacing and cooldown are tracked under ``state_key`` when given, so they
        outlive a window key that changes over time.
        """
        now = self._current_time()

        async with self._lock:
            self._sweep(now)
            state = self._states.setdefault(state_key or key, _KeyState())
            window = self._states.setdefault(key, _KeyState())
            if state.cooldown_until is not None:
                if now < state.cooldown_until:
                    return False, _retry_after(state.cooldown_until - now)
                state.last_accepted = None
                state.cooldown_until = None

            if state.last_accepted is not None and now - state.last_accepted < min_interval_seconds:
                return False, _retry_after(state.last_accepted + min_interval_seconds - now)

            events = window.events
            window_start = now - window_seconds
            while events and events[0] <= window_start:
                events.popleft()

            if len(events) >= max_requests:
                return False, _retry_after((events[0] + window_seconds) - now)

            events.append(now)
            window.expires_at = max(window.expires_at, now + window_seconds)
            state.last_accepted = now
            state.expires_at = max(state.expires_at, now + min_interval_seconds)
            if len(events) >= max_requests and cooldown_seconds > 0:
                # The counter restarts from zero once the cooldown ends.
                events.clear()
                state.cooldown_until = now + cooldown_seconds
                state.expires_at = max(state.expires_at, state.cooldown_until)
            return True, 0

    async def clear(self) -> None:
        """Drop all tracked counters (for tests)."""
        async with self._lock:
            self._states.clear()


class RedisSlidingWindowRateLimiter:
    """Redis-backed limiter shared across app instances."""

    def __init__(
        self,
        *,
        redis_url: str,
        namespace: str,
        now_provider: Callable[[], float] | None = None,
    ) -> None:
        self._redis_url = redis_url
        self._namespace = namespace
        self._now = now_provider
        self._init_lock = asyncio.Lock()
        self._client: Any | None = None
        self._acquire_script: Any | None = None

    def _current_time(self) -> float:
        if self._now is not None:
            return self._now()
        return time.time()

    def _build_storage_keys(self, key: str, state_key: str | None = None) -> list[str]:
        return [f"{self._namespace}:{key}:events", f"{self._namespace}:{state_key or key}:state"]

    async def _ensure_initialized(self) -> None:
        if self._client is not None and self._acquire_script is not None:
            return

        async with self._init_lock:
            if self._client is None:
                from redis.asyncio import from_url

                self._client = from_url(
                    self._redis_url,
                    encoding="utf-8",
                    decode_responses=True,
                )

            if self._acquire_script is None:
                self._acquire_script = self._client.register_script(_REDIS_ACQUIRE_SCRIPT)

    async def acquire(
        self,
        key: str,
        *,
        max_requests: int,
        window_seconds: int,
        min_interval_seconds: int = 0,
        cooldown_seconds: int = 0,
        state_key: str | None = None,
    ) -> tuple[bool, int]:
        await self._ensure_initialized()
        now = self._current_time()
        result = await self._acquire_script(
            keys=self._build_storage_keys(key, state_key),
            args=[
                now,
                window_seconds,
                max_requests,
                f"{now}:{uuid4().hex}",
                min_interval_seconds,
                cooldown_seconds,
            ],
        )

        if bool(int(result[0])):
            return True, 0
        return False, _retry_after(float(result[1]))

    async def clear(self) -> None:
        """Delete limiter keys for this namespace."""
        await self._ensure_initialized()
        pattern = f"{self._namespace}:*"
        cursor: int = 0
        while True:
            cursor, keys = await self._client.scan(cursor=cursor, match=pattern, count=100)
            if keys:
                await self._client.delete(*keys)
            if int(cursor) == 0:
                break


_rate_limiter: RateLimiter | None = None
_rate_limiter_signature: tuple[str, str | None, str] | None = None


def _build_rate_limiter(settings: Settings) -> RateLimiter:
    if settings.payment_rate_limit_backend == "redis":
        return RedisSlidingWindowRateLimiter(
            redis_url=settings.redis_url or "",
            namespace=settings.payment_rate_limit_redis_namespace,
        )
    return InMemorySlidingWindowRateLimiter()


def get_rate_limiter() -> RateLimiter:
    """Return shared limiter instance for configured backend."""
    global _rate_limiter, _rate_limiter_signature
    settings = get_settings()
    signature = (
        settings.payment_rate_limit_backend,
        settings.redis_url,
        settings.payment_rate_limit_redis_namespace,
    )
    if _rate_limiter is None or _rate_limiter_signature != signature:
        _rate_limiter = _build_rate_limiter(settings)
        _rate_limiter_signature = signature
    return _rate_limiter
