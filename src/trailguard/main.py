"""Main entry point for the trailguard application."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from trailguard import __version__
from trailguard.api.routes import router
from trailguard.cache.client import CacheClient
from trailguard.circuit_breaker.exceptions import CircuitBreakerError, CircuitOpenError
from trailguard.core.config import Settings, get_settings
from trailguard.core.http_client import OutboundHttpClient
from trailguard.core.logging import setup_logging
from trailguard.rl import (
    AdmissionController,
    EndpointAdmissionController,
    RateLimitExceededError,
    RateLimitMiddleware,
    create_admission_controller,
    create_endpoint_controller,
    create_redis_client,
    get_rate_limit_config,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan management
    Opens the outbound clients on startup and closes the ones it owns on shutdown
    """
    state = app.state
    settings: Settings = state.settings

    logger.info("Starting trailguard...")
    await state.http_client.start()
    if state.owns_cache_client:
        await state.cache_client.connect()

    logger.info(
        "Service configuration",
        extra={
            "host": settings.HOST,
            "port": settings.PORT,
            "environment": settings.ENVIRONMENT,
            "log_level": settings.LOG_LEVEL,
            "rate_limit_backend": settings.RATE_LIMIT_BACKEND,
            "rate_limiting_enabled": settings.ENABLE_RATE_LIMITING,
            "cache": state.cache_client.get_connection_status(),
        }
    )

    yield

    logger.info("Shutting down trailguard...")
    if state.owns_http_client:
        await state.http_client.close()
    if state.owns_cache_client:
        await state.cache_client.close()
    if state.rate_limit_redis is not None:
        await state.rate_limit_redis.aclose()


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Custom validation error handler"""
    logger.warning(
        "Request validation failed",
        extra={
            "url": str(request.url),
            "method": request.method,
            "errors": exc.errors()
        }
    )

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "detail": "Request validation failed",
            "errors": exc.errors()
        }
    )


async def circuit_breaker_exception_handler(request: Request, exc: CircuitBreakerError):
    """Map outbound dependency failures to 503 / 502"""
    logger.warning(
        "Outbound dependency failure",
        extra={
            "url": str(request.url),
            "method": request.method,
            "target": exc.target,
            "error_type": type(exc).__name__,
        }
    )

    headers = None
    if isinstance(exc, CircuitOpenError):
        headers = {"Retry-After": exc.get_retry_after_header()}

    return JSONResponse(
        status_code=exc.get_http_status_code(),
        content={"detail": str(exc), "error": exc.to_dict()},
        headers=headers,
    )


async def rate_limit_exception_handler(request: Request, exc: RateLimitExceededError):
    """Rate limit rejections raised from inside handlers"""
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content=exc.to_dict(),
        headers={"Retry-After": exc.get_retry_after_header()},
    )


async def general_exception_handler(request: Request, exc: Exception):
    """General exception handler for unhandled errors"""
    logger.error(
        "Unhandled exception",
        extra={
            "url": str(request.url),
            "method": request.method,
            "error": str(exc)
        },
        exc_info=True
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "Internal server error occurred"
        }
    )


def create_app(
    settings: Optional[Settings] = None,
    http_client: Optional[OutboundHttpClient] = None,
    cache_client: Optional[CacheClient] = None,
    admission_controller: Optional[AdmissionController] = None,
    endpoint_controller: Optional[EndpointAdmissionController] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()

    app = FastAPI(
        title="trailguard",
        description="Resilience layer for outbound calls, caching and rate limiting",
        version=__version__,
        lifespan=lifespan,
        openapi_tags=[
            {
                "name": "health",
                "description": "Health check and dependency status"
            }
        ]
    )

    rl_config = get_rate_limit_config(settings)
    rate_limit_redis = None
    if admission_controller is None or endpoint_controller is None:
        rate_limit_redis = create_redis_client(rl_config)
    if admission_controller is None:
        admission_controller = create_admission_controller(config=rl_config, redis=rate_limit_redis)
    if endpoint_controller is None:
        endpoint_controller = create_endpoint_controller(config=rl_config, redis=rate_limit_redis)

    app.state.settings = settings
    app.state.owns_http_client = http_client is None
    app.state.owns_cache_client = cache_client is None
    app.state.http_client = http_client or OutboundHttpClient(settings)
    app.state.cache_client = cache_client or CacheClient(settings)
    app.state.rate_limit_redis = rate_limit_redis

    # Per-endpoint limits run inside the global limiter
    app.add_middleware(
        RateLimitMiddleware,
        controller=endpoint_controller,
        exempt_paths=(),
        blocked_user_agents=(),
        enforce=rl_config.enforce,
    )
    app.add_middleware(
        RateLimitMiddleware,
        controller=admission_controller,
        exempt_paths=tuple(rl_config.exempt_paths),
        blocked_user_agents=tuple(rl_config.blocked_user_agents),
        enforce=rl_config.enforce,
    )

    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(CircuitBreakerError, circuit_breaker_exception_handler)
    app.add_exception_handler(RateLimitExceededError, rate_limit_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    app.include_router(router, prefix="/api")

    return app


def main() -> None:
    """Main entry point for the application."""
    settings = get_settings()
    setup_logging(settings)

    logger.info("Starting trailguard...")

    app = create_app(settings)

    uvicorn.run(
        app,
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
        access_log=True,
        server_header=False,
        date_header=True,
    )


if __name__ == "__main__":
    main()
