"""API middleware modules."""

from .no_cache import NO_CACHE_HEADERS, NoCacheMiddleware
from .rate_limit import RATE_LIMIT_WRITE, get_rate_limit_key, limiter

__all__ = [
    "NO_CACHE_HEADERS",
    "NoCacheMiddleware",
    "RATE_LIMIT_WRITE",
    "get_rate_limit_key",
    "limiter",
]
