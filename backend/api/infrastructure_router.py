"""
Infrastructure Monitoring Router
Health checks, gateway statistics and cache administration
"""

from fastapi import APIRouter, Depends, Query, Request
from datetime import datetime
from typing import Optional

import psutil

from gateway import DataGateway, ResourceType, ValidationError

router = APIRouter(tags=["Infrastructure"])

_start_time = datetime.now()


def get_gateway(request: Request) -> DataGateway:
    return request.app.state.gateway


# ============================================
# HEALTH CHECKS
# ============================================

@router.get("/health")
async def health_check(gateway: DataGateway = Depends(get_gateway)):
    """
    Liveness plus memory usage. Returns 200 while the process is up.
    """
    memory = psutil.Process().memory_info()
    cache_stats = gateway.cache.get_stats()
    ceiling = gateway.config.heap_ceiling_bytes

    return {
        "status": "healthy",
        "service": "solana-data-gateway",
        "environment": gateway.config.environment.value,
        "timestamp": datetime.now().isoformat(),
        "uptime_seconds": _get_uptime(),
        "memory": {
            "rss_mb": round(memory.rss / 1024 / 1024, 1),
            "ceiling_mb": round(ceiling / 1024 / 1024, 1),
            "percentage": round(memory.rss / ceiling * 100, 1) if ceiling else None,
        },
        "cache": {
            "entries": cache_stats["entries"],
            "bytes": cache_stats["bytes"],
            "utilization": cache_stats["utilization"],
        },
    }


# ============================================
# METRICS
# ============================================

@router.get("/api/gateway/stats")
async def get_gateway_stats(request: Request, gateway: DataGateway = Depends(get_gateway)):
    """Cache, single-flight, queue, failover and error statistics."""
    tracker = getattr(request.app.state, "error_tracker", None)

    return {
        **gateway.get_stats(),
        "errors": tracker.get_stats() if tracker else None,
        "config": gateway.config.to_dict(),
        "timestamp": datetime.now().isoformat(),
    }


# ============================================
# CACHE ADMINISTRATION
# ============================================

@router.delete("/api/gateway/cache")
async def invalidate_cache(
    resource: Optional[str] = Query(None, description="pool-listing or token-price"),
    key: Optional[str] = Query(None, description="Exact cache key, e.g. price:<mint>"),
    gateway: DataGateway = Depends(get_gateway),
):
    """Invalidate one key, one resource class, or the whole cache."""
    resource_type = None
    if resource:
        try:
            resource_type = ResourceType(resource)
        except ValueError:
            raise ValidationError(
                f"unknown resource '{resource}'",
                {"allowed": [r.value for r in ResourceType if r != ResourceType.RPC]},
            )

    removed = gateway.invalidate(resource_type, key)

    return {
        "success": True,
        "removed": removed,
        "timestamp": datetime.now().isoformat(),
    }


# ============================================
# HELPERS
# ============================================

def _get_uptime() -> float:
    """Get application uptime in seconds"""
    return (datetime.now() - _start_time).total_seconds()
