"""
CacheStore: one get/set/invalidate interface over the selected backend.
"""

import hashlib
import json
from typing import Any, Dict, Mapping, Optional, Tuple

from shared.errors import CacheDegraded, SerializationError
from shared.logging import get_logger

from .backends import CacheBackend, InMemoryBackend, RedisBackend

DEFAULT_TTL_SECONDS = 3600


def build_key(source: str, operation: str, params: Mapping[str, Any]) -> str:
    """Deterministic cache key for ``(source, operation, params)``.

    Parameters are serialized with sorted keys so insertion order does not
    matter. The digest covers source and operation as well, the readable
    prefix is only for operators.
    """
    material = json.dumps(
        [source, operation, dict(params)],
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=True,
        default=str,
    )
    digest = hashlib.sha256(material.encode("utf-8")).hexdigest()
    return f"{source}:{operation}:{digest}"


class CacheStore:
    """Cache-aside store that absorbs every backend failure."""

    def __init__(self, backend: CacheBackend, *, default_ttl: int = DEFAULT_TTL_SECONDS):
        self._backend = backend
        self.default_ttl = default_ttl
        self.logger = get_logger("licences.cache")

    @classmethod
    async def create(
        cls,
        redis_url: str,
        *,
        ephemeral: bool = False,
        connect_timeout: float = 3.0,
        default_ttl: int = DEFAULT_TTL_SECONDS,
    ) -> "CacheStore":
        """Select the backend once for the lifetime of the process."""
        logger = get_logger("licences.cache")

        if ephemeral:
            logger.info("Ephemeral mode, using in-memory cache")
            return cls(InMemoryBackend(), default_ttl=default_ttl)

        redis_backend = RedisBackend(redis_url, connect_timeout=connect_timeout)
        if await redis_backend.connect():
            return cls(redis_backend, default_ttl=default_ttl)

        await redis_backend.close()
        logger.warning("Redis unavailable, falling back to in-memory cache")
        return cls(InMemoryBackend(), default_ttl=default_ttl)

    build_key = staticmethod(build_key)

    @property
    def is_durable_backend(self) -> bool:
        return self._backend.durable

    @property
    def backend_name(self) -> str:
        return self._backend.name

    @property
    def is_ready(self) -> bool:
        return self._backend.is_ready

    async def get(self, key: str) -> Optional[Any]:
        """Return the cached value or None on miss, degraded backend or corrupt entry."""
        try:
            raw = await self._backend.get(key)
        except CacheDegraded as exc:
            self.logger.warning("Cache read degraded", backend=exc.backend, error=exc.message)
            return None
        except Exception as exc:
            self.logger.error("Unexpected cache read failure", backend=self.backend_name, error=str(exc))
            return None

        if raw is None:
            return None

        try:
            return self._decode(raw)
        except SerializationError as exc:
            self.logger.warning("Discarding unreadable cache entry", key=key, error=exc.message)
            return None

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        ttl = self.default_ttl if ttl_seconds is None else int(ttl_seconds)
        if ttl <= 0:
            self.logger.warning("Refusing to cache entry with non-positive TTL", key=key, ttl=ttl)
            return

        try:
            payload = json.dumps(value, separators=(",", ":"))
        except (TypeError, ValueError) as exc:
            self.logger.warning("Value is not serializable, skipping cache write", key=key, error=str(exc))
            return

        try:
            await self._backend.set(key, payload, ttl)
        except CacheDegraded as exc:
            self.logger.warning("Cache write degraded", backend=exc.backend, error=exc.message)
        except Exception as exc:
            self.logger.error("Unexpected cache write failure", backend=self.backend_name, error=str(exc))

    async def invalidate(self, key: str) -> None:
        try:
            await self._backend.delete(key)
            self.logger.info("Cache entry invalidated", key=key)
        except CacheDegraded as exc:
            self.logger.warning("Cache invalidation degraded", backend=exc.backend, error=exc.message)
        except Exception as exc:
            self.logger.error("Unexpected cache invalidation failure", backend=self.backend_name, error=str(exc))

    async def increment(self, key: str, ttl_seconds: int) -> Optional[Tuple[int, float]]:
        """Windowed counter on the selected backend. None when the backend is degraded."""
        try:
            return await self._backend.increment(key, ttl_seconds)
        except CacheDegraded as exc:
            self.logger.warning("Counter increment degraded", backend=exc.backend, error=exc.message)
        except Exception as exc:
            self.logger.error("Unexpected counter failure", backend=self.backend_name, error=str(exc))
        return None

    def breaker_state(self) -> Optional[Dict[str, Any]]:
        return self._backend.breaker_state()

    async def close(self) -> None:
        await self._backend.close()

    @staticmethod
    def _decode(raw: Any) -> Any:
        try:
            if isinstance(raw, bytes):
                raw = raw.decode("utf-8")
            return json.loads(raw)
        except (TypeError, ValueError) as exc:
            raise SerializationError(details={"error": str(exc)}) from exc
