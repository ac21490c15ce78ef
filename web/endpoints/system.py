"""System health and cache statistics endpoints."""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from web.services import Services, get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


@router.get("/health")
async def health_check(services: Services = Depends(get_services)):
    """Report store connectivity alongside live debate and socket counts."""
    store_health = await services.store.health_check()
    healthy = store_health.get("status") == "healthy"
    body = {
        "success": healthy,
        "status": "healthy" if healthy else "degraded",
        "store": store_health,
        "activeDebates": services.manager.active_count,
        "websocketConnections": len(services.broadcaster.connections),
    }
    if not healthy:
        logger.warning(f"Health check degraded: {store_health.get('error')}")
        return JSONResponse(status_code=503, content=body)
    return body


@router.get("/cache/stats")
async def get_cache_stats(services: Services = Depends(get_services)):
    """Semantic cache hit ratio, token savings and configuration."""
    if services.cache is None:
        return {"success": True, "enabled": False, "cache_stats": None}
    return {"success": True, "enabled": True, "cache_stats": services.cache.get_stats()}
