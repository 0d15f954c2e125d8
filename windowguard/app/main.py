from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from windowguard.app.core.config import settings
from windowguard.app.core.logging import get_logger, setup_logging
from windowguard.app.core.redis_client import close_redis_client, get_redis_client, ping_redis
from windowguard.app.exceptions import RateLimitExceededError, StoreUnavailableError
from windowguard.app.middleware.rate_limit import (
    RateLimiter,
    RateLimitMiddleware,
    rate_limit_exceeded_handler,
)
from windowguard.app.middleware.request_id import RequestIdMiddleware
from windowguard.app.services.rate_limit import PolicyRegistry, SlidingWindowCounter


def create_app(
    redis_client: Optional[Any] = None,
    registry: Optional[PolicyRegistry] = None,
    global_rate_limit: bool = True,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        redis_client: Redis client to use (defaults to the process-wide client)
        registry: Policy registry (defaults to policies from settings)
        global_rate_limit: Apply the default policy to every request

    Returns:
        Configured FastAPI application instance
    """
    setup_logging()
    logger = get_logger(__name__)

    client = redis_client if redis_client is not None else get_redis_client()
    registry = registry or PolicyRegistry.from_settings(settings)
    limiter = RateLimiter(
        counter=SlidingWindowCounter(redis_client=client),
        registry=registry,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Log startup and release the Redis connection pool on shutdown."""
        logger.info(
            f"Application startup complete: rate limiting "
            f"{'enabled' if limiter.enabled else 'disabled'}, policies {registry.names()}"
        )
        yield
        if redis_client is None:
            await close_redis_client()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="windowguard",
        description="Distributed sliding-window rate limiting backed by Redis",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.rate_limiter = limiter

    # Add middleware (order matters: last added = first executed)
    if global_rate_limit:
        app.add_middleware(RateLimitMiddleware, limiter=limiter)

    # Request ID wraps rate limiting so limiter logs carry the id
    app.add_middleware(RequestIdMiddleware)

    # CORS middleware (outermost - handles preflight requests first)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
        allow_headers=["*"],
        expose_headers=[
            "X-Request-ID",
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
            "Retry-After",
        ],
        max_age=600,
    )

    register_exception_handlers(app)

    @app.get("/health")
    async def health() -> JSONResponse:
        """Health check reporting shared store reachability."""
        redis_status = await ping_redis(client)
        status = "ok" if redis_status["status"] == "ok" else "degraded"
        # Always 200: requests still flow while Redis is down
        return JSONResponse(
            status_code=200,
            content={"status": status, "components": {"redis": redis_status}},
        )

    return app


def register_exception_handlers(app: FastAPI) -> None:
    """Install handlers rendering windowguard exceptions as JSON responses."""
    logger = get_logger(__name__)

    app.add_exception_handler(RateLimitExceededError, rate_limit_exceeded_handler)

    @app.exception_handler(StoreUnavailableError)
    async def store_unavailable_handler(request: Request, exc: StoreUnavailableError) -> JSONResponse:
        """Handle StoreUnavailableError and return HTTP 503 response."""
        logger.error(f"Rate limit store unavailable: {exc}", extra={"rate_limit_key": exc.key})
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "message": "Service temporarily unavailable", "error": None},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled exceptions.

        Never returns a traceback to the client; full details are logged.
        """
        request_id = getattr(request.state, "request_id", "unknown")
        logger.exception(
            f"Unhandled {type(exc).__name__} [request_id={request_id}]",
            extra={"request_id": request_id},
        )

        content: dict[str, Any] = {
            "success": False,
            "message": "Internal server error",
            "error": None,
            "request_id": request_id,
        }
        if settings.debug:
            content["error"] = f"{type(exc).__name__}: {exc}"
        return JSONResponse(status_code=500, content=content)


def get_rate_limiter(request: Request) -> RateLimiter:
    """FastAPI dependency returning the application's rate limiter."""
    return request.app.state.rate_limiter


# Create the application instance
app = create_app()
