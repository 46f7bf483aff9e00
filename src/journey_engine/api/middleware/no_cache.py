"""Cache-disabling headers for per-user journey responses."""

from typing import Sequence

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response


NO_CACHE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, proxy-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}

NO_CACHE_PATH_PREFIXES = ("/api/v1/journey", "/api/v1/points")


def apply_no_cache_headers(request: Request, response: Response) -> Response:
    """Stamp the no-cache headers on a response to a journey or points path."""
    if request.url.path.startswith(NO_CACHE_PATH_PREFIXES):
        for name, value in NO_CACHE_HEADERS.items():
            response.headers[name] = value
    return response


class NoCacheMiddleware(BaseHTTPMiddleware):
    """Adds no-cache headers to every response under the given path prefixes.

    Journey and points responses change with every logged meal, so clients
    and proxies must never serve them from cache. Error responses get the
    headers too. Unhandled errors bypass this middleware, so the 500
    handler stamps them itself.
    """

    def __init__(self, app, path_prefixes: Sequence[str] = NO_CACHE_PATH_PREFIXES):
        super().__init__(app)
        self.path_prefixes = tuple(path_prefixes)

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)
        if request.url.path.startswith(self.path_prefixes):
            for name, value in NO_CACHE_HEADERS.items():
                response.headers[name] = value
        return response
