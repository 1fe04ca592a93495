"""
Interchangeable key/value backends with per-entry TTL.
"""

import asyncio
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Tuple

import redis.asyncio as redis

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException
from shared.errors import CacheDegraded
from shared.logging import get_logger

# Expired entries are swept once the in-memory map reaches this size.
SWEEP_THRESHOLD = 1000
SWEEP_INTERVAL_SECONDS = 60.0


class CacheBackend(ABC):
    """Text value store with TTL semantics."""

    name: str = "backend"
    durable: bool = False

    @property
    def is_ready(self) -> bool:
        return True

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    @abstractmethod
    async def increment(self, key: str, ttl_seconds: int) -> Tuple[int, float]:
        """Count one hit on ``key``; returns the count and seconds until the window expires."""

    def breaker_state(self) -> Optional[Dict[str, Any]]:
        """Circuit breaker snapshot for health reporting; None when the backend has none."""
        return None

    async def close(self) -> None:
        return None


class InMemoryBackend(CacheBackend):
    """Process-local store.

    Expired entries are dropped when read, and swept in bulk on write once
    the map holds ``sweep_threshold`` entries (at most once per
    ``sweep_interval`` seconds).
    """

    name = "in-memory"
    durable = False

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        *,
        sweep_threshold: int = SWEEP_THRESHOLD,
        sweep_interval: float = SWEEP_INTERVAL_SECONDS,
    ):
        self._clock = clock
        self._store: Dict[str, Tuple[float, str]] = {}
        self._lock = threading.Lock()
        self.sweep_threshold = sweep_threshold
        self.sweep_interval = sweep_interval
        self._last_sweep = float("-inf")

    async def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._store[key]
                return None
            return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            now = self._clock()
            self._maybe_sweep(now)
            self._store[key] = (now + ttl_seconds, value)

    async def delete(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)

    async def increment(self, key: str, ttl_seconds: int) -> Tuple[int, float]:
        with self._lock:
            now = self._clock()
            entry = self._store.get(key)
            if entry is None or now >= entry[0]:
                self._maybe_sweep(now)
                expires_at, count = now + ttl_seconds, 1
            else:
                expires_at, count = entry[0], int(entry[1]) + 1
            self._store[key] = (expires_at, str(count))
            return count, expires_at - now

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def _maybe_sweep(self, now: float) -> None:
        # Caller holds the lock.
        if len(self._store) < self.sweep_threshold or now - self._last_sweep < self.sweep_interval:
            return
        self._last_sweep = now
        expired = [key for key, (expires_at, _) in self._store.items() if now >= expires_at]
        for key in expired:
            del self._store[key]


class RedisBackend(CacheBackend):
    """Shared Redis store.

    ``connect`` builds the client and runs the pre-flight ping. After that,
    the first failed command opens the breaker and subsequent operations
    short-circuit until the recovery window lets a trial call through.
    """

    name = "redis"
    durable = True

    def __init__(
        self,
        redis_url: str,
        *,
        connect_timeout: float = 3.0,
        recovery_timeout: float = 30.0,
        client: Optional[redis.Redis] = None,
    ):
        self.redis_url = redis_url
        self.connect_timeout = connect_timeout
        self.logger = get_logger("licences.cache.redis")
        self._client = client
        self._breaker = CircuitBreaker(
            "cache.redis",
            failure_threshold=1,
            recovery_timeout=recovery_timeout,
        )
        self._ready = False

    async def connect(self) -> bool:
        """Pre-flight connectivity check bounded by ``connect_timeout``."""
        try:
            if self._client is None:
                self._client = redis.from_url(
                    self.redis_url,
                    encoding="utf-8",
                    decode_responses=True,
                    socket_connect_timeout=self.connect_timeout,
                    socket_timeout=self.connect_timeout,
                )
            await asyncio.wait_for(self._client.ping(), timeout=self.connect_timeout)
        except Exception as exc:
            self._ready = False
            self.logger.warning(
                "Redis pre-flight check failed",
                redis_url=self._redacted_url(),
                timeout_seconds=self.connect_timeout,
                error=str(exc) or type(exc).__name__,
            )
            return False

        self._ready = True
        self.logger.info("Redis cache connected", redis_url=self._redacted_url())
        return True

    @property
    def is_ready(self) -> bool:
        return self._ready and not self._breaker.is_open()

    def breaker_state(self) -> Optional[Dict[str, Any]]:
        return self._breaker.get_state()

    async def get(self, key: str) -> Optional[str]:
        value = await self._execute("get", key)
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self._execute("setex", key, ttl_seconds, value)

    async def delete(self, key: str) -> None:
        await self._execute("delete", key)

    async def increment(self, key: str, ttl_seconds: int) -> Tuple[int, float]:
        count = int(await self._execute("incr", key))
        if count == 1:
            await self._execute("expire", key, ttl_seconds)
            return count, float(ttl_seconds)

        remaining = await self._execute("ttl", key)
        if not isinstance(remaining, int) or remaining < 0:
            # Counter lost its expiry; start a fresh window rather than count forever.
            await self._execute("expire", key, ttl_seconds)
            remaining = ttl_seconds
        return count, float(remaining)

    async def close(self) -> None:
        if self._client is None:
            return
        try:
            await self._client.aclose()
        except Exception as exc:
            self.logger.debug("Redis close failed", error=str(exc))

    async def _execute(self, command: str, *args: Any) -> Any:
        if not self._ready:
            raise CacheDegraded(self.name, "Redis backend is not connected")

        try:
            return await self._breaker.call(getattr(self._client, command), *args)
        except CircuitBreakerOpenException as exc:
            raise CacheDegraded(self.name, "Redis backend is not ready") from exc
        except Exception as exc:
            raise CacheDegraded(self.name, str(exc) or type(exc).__name__) from exc

    def _redacted_url(self) -> str:
        if "@" not in self.redis_url:
            return self.redis_url
        scheme, _, rest = self.redis_url.partition("://")
        return f"{scheme}://***@{rest.split('@', 1)[1]}"
