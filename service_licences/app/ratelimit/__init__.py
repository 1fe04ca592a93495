"""
Per-client request throttling for public routes.
"""

from .fixed_window import FixedWindowRateLimiter, RateLimitGuard

__all__ = ["FixedWindowRateLimiter", "RateLimitGuard"]
