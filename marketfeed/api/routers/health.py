"""Health check endpoints."""

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Depends

from marketfeed.config.constants import SLICE_NETWORKS, SLICE_TRANSPORT, TransportStatus
from marketfeed.config.settings import settings
from marketfeed.ingestion.aggregator import summarize_sources
from marketfeed.api.deps import get_feeds
from marketfeed.tasks.feeds import MarketFeeds

router = APIRouter()


@router.get("/health")
async def health_check() -> dict[str, Any]:
    """Basic health check."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(UTC).isoformat(),
        "version": "1.0.0",
        "environment": settings.app_env,
    }


@router.get("/health/detailed")
async def detailed_health_check(feeds: MarketFeeds = Depends(get_feeds)) -> dict[str, Any]:
    """Detailed health check with feed and upstream status."""
    services: dict[str, Any] = {}

    for name, scheduler in feeds.schedulers.items():
        state = scheduler.state
        services[name] = {
            "status": "unhealthy" if state.error else "healthy",
            "loading": state.loading,
            "error": state.error,
            "last_updated": state.last_updated.isoformat() if state.last_updated else None,
        }

    transport = feeds.store.get(SLICE_TRANSPORT)
    if transport is not None:
        services["transport"] = {
            **transport.to_dict(),
            "status": "healthy" if transport.status == TransportStatus.CONNECTED else "degraded",
            "state": transport.status.value,
        }

    networks = feeds.store.get(SLICE_NETWORKS)
    sources = summarize_sources(networks.data) if networks is not None else None

    all_healthy = all(s.get("status") == "healthy" for s in services.values())

    return {
        "status": "healthy" if all_healthy else "degraded",
        "timestamp": datetime.now(UTC).isoformat(),
        "services": services,
        "sources": sources,
    }


@router.get("/ready")
async def readiness_check(feeds: MarketFeeds = Depends(get_feeds)) -> dict[str, str]:
    """Ready once every feed has completed at least one round."""
    if all(s.state.last_updated is not None for s in feeds.schedulers.values()):
        return {"status": "ready"}
    return {"status": "not_ready"}


@router.get("/live")
async def liveness_check() -> dict[str, str]:
    """Kubernetes liveness probe."""
    return {"status": "alive"}
