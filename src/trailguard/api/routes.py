"""
trailguard API Routes
Health endpoints exposing cache connectivity and breaker states
"""
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request

from trailguard import __version__
from trailguard.cache.client import CacheClient
from trailguard.core.http_client import OutboundHttpClient

# Create API router
router = APIRouter()


def get_http_client(request: Request) -> OutboundHttpClient:
    """Dependency injection for the outbound HTTP client owned by the app"""
    return request.app.state.http_client


def get_cache_client(request: Request) -> CacheClient:
    """Dependency injection for the cache client owned by the app"""
    return request.app.state.cache_client


@router.get("/health",
            tags=["health"],
            summary="Health Check",
            description="Check if the service is running and whether the cache is reachable")
async def health_check(cache: CacheClient = Depends(get_cache_client)):
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": __version__,
        "services": {
            "cache": cache.get_connection_status(),
        },
    }


@router.get("/health/dependencies",
            tags=["health"],
            summary="Dependency Health",
            description="Circuit breaker state for Redis and every outbound HTTP target")
async def dependency_health(
    http_client: OutboundHttpClient = Depends(get_http_client),
    cache: CacheClient = Depends(get_cache_client),
):
    return {
        "redis": {
            "breaker": cache.get_breaker_state(),
            "connection": cache.get_connection_status(),
        },
        "http": [
            {"target": target, "state": state}
            for target, state in sorted(http_client.get_breaker_states().items())
        ],
    }
