"""
Fixed window rate limiter for the public licence map routes.

Counters live in the selected cache backend, so with Redis the budget is
shared by every replica. A degraded backend falls back to a process-local
counter.
"""

from __future__ import annotations

import math
import time
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

from fastapi import Request

from shared.errors import RateLimitError
from shared.logging import get_logger
from service_licences.app.caching import CacheStore, InMemoryBackend

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


class FixedWindowRateLimiter:
    """Fixed window counter keyed by client id."""

    def __init__(
        self,
        limit: int = 100,
        window_seconds: int = 60,
        *,
        store: Optional[CacheStore] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.limit = limit
        self.window_seconds = window_seconds
        self.store = store
        self._local = InMemoryBackend(clock=clock)
        self.logger = get_logger("licences.rate_limiter")

    def _make_key(self, client_id: str) -> str:
        return f"rate_limit:{client_id}"

    async def check(self, client_id: str) -> Dict[str, Any]:
        """Count one request for ``client_id`` and report whether it is allowed."""
        key = self._make_key(client_id)

        counted = await self.store.increment(key, self.window_seconds) if self.store is not None else None
        if counted is None:
            counted = await self._local.increment(key, self.window_seconds)
        count, expires_in = counted

        reset_in = max(1, math.ceil(expires_in))
        if count > self.limit:
            return {
                "allowed": False,
                "current_count": count,
                "limit": self.limit,
                "remaining": 0,
                "reset_in_seconds": reset_in,
                "retry_after": reset_in,
            }

        return {
            "allowed": True,
            "current_count": count,
            "limit": self.limit,
            "remaining": max(0, self.limit - count),
            "reset_in_seconds": reset_in,
        }

    async def reset(self, client_id: str) -> None:
        key = self._make_key(client_id)
        await self._local.delete(key)
        if self.store is not None:
            await self.store.invalidate(key)


class RateLimitGuard:
    """Applies the limiter to incoming requests. Fails open.

    Clients are identified by socket address. ``X-Forwarded-For`` and
    ``X-Real-IP`` are honoured only with ``trust_forwarded_for``, which is
    for deployments behind a proxy that overwrites those headers.
    """

    def __init__(
        self,
        rate_limiter: FixedWindowRateLimiter,
        metrics: Optional["MetricsCollector"] = None,
        *,
        trust_forwarded_for: bool = False,
    ):
        self.rate_limiter = rate_limiter
        self.metrics = metrics
        self.trust_forwarded_for = trust_forwarded_for
        self.logger = get_logger("licences.rate_limit_guard")

    async def check_request(self, request: Request) -> Dict[str, Any]:
        """Raise RateLimitError when the caller is over budget."""
        client_id = self._get_client_id(request)

        try:
            result = await self.rate_limiter.check(client_id)
        except Exception as e:
            self.logger.error("Rate limiter error", error=str(e))
            return {"allowed": True, "limit": self.rate_limiter.limit, "error": str(e)}

        if not result["allowed"]:
            self.logger.warning(
                "Rate limit exceeded",
                client_id=client_id,
                endpoint=request.url.path,
                limit=result["limit"],
            )
            if self.metrics:
                self.metrics.record_rate_limit_rejection(request.url.path)
            error = RateLimitError(details={"retry_after": result["retry_after"]})
            error.headers = {
                "X-RateLimit-Limit": str(result["limit"]),
                "X-RateLimit-Remaining": "0",
                "X-RateLimit-Reset": str(result["reset_in_seconds"]),
                "Retry-After": str(result["retry_after"]),
            }
            raise error

        return result

    def _get_client_id(self, request: Request) -> str:
        if self.trust_forwarded_for:
            forwarded_for = request.headers.get("X-Forwarded-For")
            if isinstance(forwarded_for, str) and forwarded_for:
                return forwarded_for.split(",")[0].strip()

            real_ip = request.headers.get("X-Real-IP")
            if isinstance(real_ip, str) and real_ip:
                return real_ip

        return request.client.host if request.client else "unknown"
