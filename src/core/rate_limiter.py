"""Redis-backed token bucket rate limiter.

Shared by the API middleware (requests per client) and by delivery jobs
(dispatches per queue).
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass

import redis.asyncio as redis

_TOKEN_BUCKET_LUA = r"""
local key = KEYS[1]
local capacity = tonumber(ARGV[1])
local rate = tonumber(ARGV[2])
local now = tonumber(ARGV[3])
local requested = tonumber(ARGV[4])

local data = redis.call("HMGET", key, "tokens", "ts")
local tokens = tonumber(data[1])
local ts = tonumber(data[2])

if tokens == nil then tokens = capacity end
if ts == nil then ts = now end

local delta = now - ts
if delta < 0 then delta = 0 end

tokens = math.min(capacity, tokens + (delta * rate))

local allowed = 0
local retry_after = 0
if tokens >= requested then
  allowed = 1
  tokens = tokens - requested
else
  retry_after = (requested - tokens) / rate
end

redis.call("HSET", key, "tokens", tokens, "ts", now)
local ttl = math.ceil((capacity / rate) * 2)
if ttl < 1 then ttl = 1 end
redis.call("EXPIRE", key, ttl)

return {allowed, tostring(tokens), tostring(retry_after)}
"""


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: float
    retry_after_s: float
    limit: int


@dataclass(frozen=True)
class RateLimiterConfig:
    redis_url: str
    # Tokens refill at `requests_per_min / 60` per second; `burst` is the bucket size.
    requests_per_min: int = 60
    burst: int = 60
    key_prefix: str = "rl"


class RateLimiter:
    """Token bucket limiter using Redis for shared state."""

    def __init__(self, config: RateLimiterConfig, *, client: redis.Redis | None = None) -> None:
        if config.requests_per_min <= 0 or config.burst <= 0:
            raise ValueError("Rate limiter config must be positive")
        self._config = config
        self._client = client or redis.from_url(config.redis_url)

    async def close(self) -> None:
        await self._client.aclose()

    async def allow(self, identity: str) -> RateLimitResult:
        key = f"{self._config.key_prefix}:{identity}"
        capacity = float(self._config.burst)
        rate = float(self._config.requests_per_min) / 60.0

        allowed, remaining, retry_after = await self._client.eval(
            _TOKEN_BUCKET_LUA, 1, key, capacity, rate, time.time(), 1
        )

        return RateLimitResult(
            allowed=bool(int(allowed)),
            remaining=float(remaining),
            retry_after_s=float(retry_after),
            limit=int(self._config.requests_per_min),
        )

    async def acquire(self, identity: str, *, max_wait_s: float = 60.0) -> None:
        """Wait until a token is available; raises ``TimeoutError`` past ``max_wait_s``."""
        deadline = time.monotonic() + max_wait_s
        while True:
            result = await self.allow(identity)
            if result.allowed:
                return
            if time.monotonic() + result.retry_after_s > deadline:
                raise TimeoutError(f"Rate limit for {identity} did not free up within {max_wait_s}s")
            await asyncio.sleep(result.retry_after_s)


def dispatch_limiter_config(redis_url: str, queue_name: str, max_dispatches_per_second: int) -> RateLimiterConfig:
    """Per-queue bucket that allows ``max_dispatches_per_second`` with a one-second burst."""
    return RateLimiterConfig(
        redis_url=redis_url,
        requests_per_min=max_dispatches_per_second * 60,
        burst=max_dispatches_per_second,
        key_prefix=f"dispatch:{queue_name}",
    )
