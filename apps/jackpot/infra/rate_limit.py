from __future__ import annotations

import math
import secrets
import time
from dataclasses import dataclass

from redis.asyncio import Redis


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    retry_after: int = 0


class SlidingWindowLimiter:
    """Sliding-window request counter kept in one Redis sorted set per key."""

    def __init__(self, redis: Redis, *, prefix: str = "ratelimit") -> None:
        self._redis = redis
        self._prefix = prefix

    def _key(self, bucket: str, identity: str) -> str:
        return f"{self._prefix}:{bucket}:{identity}"

    async def hit(self, bucket: str, identity: str, *, limit: int, window_seconds: int) -> RateLimitResult:
        key = self._key(bucket, identity)
        now_ms = int(time.time() * 1000)
        window_ms = window_seconds * 1000
        member = f"{now_ms}-{secrets.token_hex(4)}"

        pipe = self._redis.pipeline(transaction=True)
        pipe.zremrangebyscore(key, 0, now_ms - window_ms)
        pipe.zadd(key, {member: now_ms})
        pipe.zcard(key)
        pipe.expire(key, window_seconds)
        _, _, count, _ = await pipe.execute()

        if count <= limit:
            return RateLimitResult(allowed=True, limit=limit, remaining=limit - count)

        # rejected requests do not occupy the window
        await self._redis.zrem(key, member)
        oldest = await self._redis.zrange(key, 0, 0, withscores=True)
        retry_after = window_seconds
        if oldest:
            retry_after = max(1, math.ceil((oldest[0][1] + window_ms - now_ms) / 1000))
        return RateLimitResult(allowed=False, limit=limit, remaining=0, retry_after=retry_after)
