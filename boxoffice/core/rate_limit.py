"""
Attempt limiting for credential validation

Two backends share one contract: ``hit(key)`` records an attempt and reports
whether it is allowed. Once a key exceeds its budget inside the window it is
blocked for ``block_seconds``; every exceeded attempt counts as a violation.
"""

import asyncio
import logging
import math
import uuid
from dataclasses import dataclass
from typing import Dict, Optional, Protocol

from boxoffice.core.clock import SystemClock
from boxoffice.core.redis import RedisManager

logger = logging.getLogger(__name__)


@dataclass
class RateLimitDecision:
    allowed: bool
    remaining: int
    retry_after: int = 0
    violations: int = 0


class RateLimiter(Protocol):
    async def hit(self, key: str) -> RateLimitDecision:
        ...

    async def reset(self, key: str) -> None:
        ...


@dataclass
class _Entry:
    attempts: int
    first_attempt: float
    blocked_until: Optional[float] = None
    violations: int = 0


class MemoryRateLimiter:
    """
    Fixed-window limiter held in process memory

    Suitable for a single worker and for tests.
    """

    CLEANUP_THRESHOLD = 10000

    def __init__(
        self,
        max_attempts: int,
        window_seconds: int,
        block_seconds: int,
        clock=None,
    ):
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self.block_seconds = block_seconds
        self.clock = clock or SystemClock()
        self._entries: Dict[str, _Entry] = {}
        self._lock = asyncio.Lock()

    def _now(self) -> float:
        return self.clock.now().timestamp()

    async def hit(self, key: str) -> RateLimitDecision:
        async with self._lock:
            now = self._now()
            if len(self._entries) > self.CLEANUP_THRESHOLD:
                self._cleanup(now)

            entry = self._entries.get(key)

            if entry and entry.blocked_until and entry.blocked_until > now:
                entry.violations += 1
                return RateLimitDecision(
                    allowed=False,
                    remaining=0,
                    retry_after=math.ceil(entry.blocked_until - now),
                    violations=entry.violations,
                )

            if entry is None or now - entry.first_attempt >= self.window_seconds:
                violations = entry.violations if entry else 0
                self._entries[key] = _Entry(attempts=1, first_attempt=now, violations=violations)
                return RateLimitDecision(allowed=True, remaining=self.max_attempts - 1, violations=violations)

            entry.attempts += 1
            if entry.attempts > self.max_attempts:
                entry.blocked_until = now + self.block_seconds
                entry.violations += 1
                return RateLimitDecision(
                    allowed=False,
                    remaining=0,
                    retry_after=self.block_seconds,
                    violations=entry.violations,
                )

            return RateLimitDecision(
                allowed=True,
                remaining=self.max_attempts - entry.attempts,
                violations=entry.violations,
            )

    async def reset(self, key: str) -> None:
        async with self._lock:
            self._entries.pop(key, None)

    def _cleanup(self, now: float) -> None:
        stale = [
            key for key, entry in self._entries.items()
            if now - entry.first_attempt > self.window_seconds
            and not (entry.blocked_until and entry.blocked_until > now)
        ]
        for key in stale:
            del self._entries[key]


class RedisRateLimiter:
    """
    Sliding-window limiter backed by Redis, shared by every worker
    """

    # KEYS: window zset, block key, violations counter
    # ARGV: limit, window ms, now ms, member, block seconds
    LUA_SCRIPT = """
    local rate_key = KEYS[1]
    local block_key = KEYS[2]
    local violation_key = KEYS[3]
    local limit = tonumber(ARGV[1])
    local window_ms = tonumber(ARGV[2])
    local now_ms = tonumber(ARGV[3])
    local member = ARGV[4]
    local block_seconds = tonumber(ARGV[5])

    local blocked_ttl = redis.call("ttl", block_key)
    if blocked_ttl > 0 then
        local violations = redis.call("incr", violation_key)
        redis.call("expire", violation_key, 86400)
        return {0, 0, blocked_ttl, violations}
    end

    redis.call("zremrangebyscore", rate_key, 0, now_ms - window_ms)
    local current = redis.call("zcard", rate_key)
    local violations = tonumber(redis.call("get", violation_key) or "0")

    if current < limit then
        redis.call("zadd", rate_key, now_ms, member)
        redis.call("pexpire", rate_key, window_ms + 1000)
        return {1, limit - current - 1, 0, violations}
    end

    redis.call("set", block_key, "1", "EX", block_seconds)
    redis.call("del", rate_key)
    violations = redis.call("incr", violation_key)
    redis.call("expire", violation_key, 86400)
    return {0, 0, block_seconds, violations}
    """

    def __init__(
        self,
        redis_manager: RedisManager,
        max_attempts: int,
        window_seconds: int,
        block_seconds: int,
    ):
        self.redis = redis_manager
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self.block_seconds = block_seconds

    async def hit(self, key: str) -> RateLimitDecision:
        try:
            now_ms = await self.redis.server_time_ms()
            result = await self.redis.eval_script(
                self.LUA_SCRIPT,
                keys=[f"rate:{key}", f"rate:{key}:blocked", f"rate:{key}:violations"],
                args=[
                    self.max_attempts,
                    self.window_seconds * 1000,
                    now_ms,
                    str(uuid.uuid4()),
                    self.block_seconds,
                ],
            )
        except Exception as e:
            # Fail open for rate limiting
            logger.error(f"Error checking rate limit for {key}: {e}")
            return RateLimitDecision(allowed=True, remaining=self.max_attempts)

        return RateLimitDecision(
            allowed=bool(int(result[0])),
            remaining=int(result[1]),
            retry_after=int(result[2]),
            violations=int(result[3]),
        )

    async def reset(self, key: str) -> None:
        client = await self.redis.connect()
        await client.delete(f"rate:{key}", f"rate:{key}:blocked")
