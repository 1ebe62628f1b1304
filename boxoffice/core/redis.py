"""
Redis configuration and connection management
"""

import redis.asyncio as redis
from typing import Optional, List
import logging
import asyncio
import time

logger = logging.getLogger(__name__)


class CircuitBreakerOpenError(Exception):
    """Raised when a call is attempted while the breaker is open"""


class CircuitBreaker:
    """
    Circuit breaker pattern for Redis operations
    """
    def __init__(self, failure_threshold=5, recovery_timeout=60, half_open_max_calls=3):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.half_open_max_calls = half_open_max_calls

        self.failure_count = 0
        self.last_failure_time = None
        self.state = "CLOSED"  # CLOSED, OPEN, HALF_OPEN
        self.half_open_calls = 0

        self._lock = asyncio.Lock()

    async def is_open(self) -> bool:
        async with self._lock:
            if self.state == "OPEN":
                if time.time() - self.last_failure_time >= self.recovery_timeout:
                    self.state = "HALF_OPEN"
                    self.half_open_calls = 0
                    return False
                return True
            return False

    async def record_success(self):
        async with self._lock:
            self.failure_count = 0
            self.half_open_calls = 0
            self.state = "CLOSED"

    async def record_failure(self):
        async with self._lock:
            self.failure_count += 1
            self.last_failure_time = time.time()
            self.half_open_calls = 0

            if self.state == "HALF_OPEN" or self.failure_count >= self.failure_threshold:
                self.state = "OPEN"

    async def call(self, func, *args, **kwargs):
        if await self.is_open():
            raise CircuitBreakerOpenError("Circuit breaker is open")

        async with self._lock:
            if self.state == "HALF_OPEN":
                if self.half_open_calls >= self.half_open_max_calls:
                    raise CircuitBreakerOpenError("Half-open call limit exceeded")
                self.half_open_calls += 1

        try:
            result = await func(*args, **kwargs)
            await self.record_success()
            return result
        except Exception:
            await self.record_failure()
            raise


class RedisManager:
    """
    Redis client owner with circuit breaker protection
    """

    def __init__(self, url: str, max_connections: int = 50):
        self.url = url
        self.max_connections = max_connections
        self.client: Optional[redis.Redis] = None
        self.circuit_breaker = CircuitBreaker()
        self.logger = logging.getLogger(__name__)

    async def connect(self) -> redis.Redis:
        if self.client is None:
            self.client = redis.from_url(
                self.url,
                max_connections=self.max_connections,
                decode_responses=True
            )
            self.logger.info("Redis client created")
        return self.client

    async def close(self):
        if self.client is not None:
            await self.client.aclose()
            self.client = None
            self.logger.info("Redis connection closed")

    async def ping(self) -> bool:
        client = await self.connect()
        return bool(await self.circuit_breaker.call(client.ping))

    async def eval_script(self, script: str, keys: List[str], args: List) -> list:
        """Run a Lua script atomically through the circuit breaker"""
        client = await self.connect()
        return await self.circuit_breaker.call(
            client.eval, script, len(keys), *keys, *args
        )

    async def server_time_ms(self) -> int:
        client = await self.connect()
        now = await self.circuit_breaker.call(client.time)
        return now[0] * 1000 + now[1] // 1000
