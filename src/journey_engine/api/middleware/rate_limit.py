"""Rate limiting for write endpoints.

Uses slowapi, keyed by the caller's user id when the ``X-User-Id`` header is
present and by client IP otherwise.
"""

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from ...config import get_settings


def get_rate_limit_key(request: Request) -> str:
    """Return ``user:<id>`` for identified callers, ``ip:<addr>`` otherwise."""
    user_id = request.headers.get("X-User-Id", "").strip()
    if user_id:
        return f"user:{user_id}"
    return f"ip:{get_remote_address(request)}"


_settings = get_settings()

limiter = Limiter(key_func=get_rate_limit_key, enabled=_settings.rate_limit_enabled)

RATE_LIMIT_WRITE = _settings.rate_limit_write
