"""FastAPI application for the Journey Engine."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from . import __version__
from .config import get_settings
from .api.deps import get_stage_catalog
from .api.exception_handlers import register_exception_handlers
from .api.middleware.no_cache import NoCacheMiddleware
from .api.middleware.rate_limit import limiter
from .api.routes import journey, points
from .utils.log_sanitizer import configure_logging


# Must run before any logging occurs
configure_logging(get_settings().log_level)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    settings = get_settings()
    logger.info(f"Starting Journey Engine v{__version__}")
    logger.info(f"Journey DB: {settings.db_path}")

    # Fail fast on a missing or invalid catalog
    catalog = get_stage_catalog()
    logger.info(f"Stage catalog v{catalog.version}: {', '.join(catalog.personas)}")

    yield

    logger.info("Shutting down Journey Engine")


app = FastAPI(
    title="Journey Engine API",
    description="Stage/task progression for nutrition and habit journeys",
    version=__version__,
    lifespan=lifespan,
    redirect_slashes=False,
)

app.state.limiter = limiter


@app.exception_handler(RateLimitExceeded)
async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    """Handle rate limit exceeded exceptions."""
    return JSONResponse(
        status_code=429,
        content={
            "error": {
                "code": "RATE_LIMIT_EXCEEDED",
                "message": f"Rate limit exceeded: {exc.detail}",
            }
        },
    )


settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "X-User-Id"],
)

# Added after CORS so it wraps every response, errors included
app.add_middleware(NoCacheMiddleware)

register_exception_handlers(app)

app.include_router(journey.router, prefix="/api/v1/journey", tags=["journey"])
app.include_router(points.router, prefix="/api/v1/points", tags=["points"])


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": __version__}


def run() -> None:
    """Run the API server with uvicorn."""
    import uvicorn

    uvicorn.run(
        "journey_engine.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
    )
