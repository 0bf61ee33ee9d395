"""
Health Checks
=============
Liveness, readiness and component health for the service.
"""

import time
from enum import Enum
from typing import Dict, Optional

import structlog
from fastapi import APIRouter, Request, Response
from pydantic import BaseModel

logger = structlog.get_logger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class ComponentHealth(BaseModel):
    status: str
    latency_ms: Optional[float] = None
    error: Optional[str] = None


class HealthResponse(BaseModel):
    status: HealthStatus
    service: str
    version: str
    components: Dict[str, ComponentHealth]
    timestamp: float


async def check_store(store) -> ComponentHealth:
    """Check store connectivity and latency."""
    try:
        start = time.time()
        await store.health_check()
        latency = (time.time() - start) * 1000
        return ComponentHealth(status="connected", latency_ms=round(latency, 2))
    except Exception as e:
        logger.error("Store health check failed", store=store.name, error=str(e))
        # Connection strings can appear in driver errors
        return ComponentHealth(status="error", error=type(e).__name__)


async def check_gateways(dispatcher) -> Dict[str, ComponentHealth]:
    results = await dispatcher.health()
    return {
        f"gateway:{channel}": ComponentHealth(status="ready" if ok else "unavailable")
        for channel, ok in results.items()
    }


def create_health_router(service_name: str, version: str = "1.0.0") -> APIRouter:
    """
    Create a health router reading the store and dispatcher from ``app.state``.

    Returns:
        Router with /health, /health/live and /health/ready
    """
    router = APIRouter(tags=["Health"])

    @router.get("/health", response_model=HealthResponse)
    async def health_check(request: Request) -> HealthResponse:
        """Component health. Unavailable gateways degrade, a dead store is unhealthy."""
        components: Dict[str, ComponentHealth] = {}
        overall_status = HealthStatus.HEALTHY

        store_health = await check_store(request.app.state.store)
        components["store"] = store_health
        if store_health.status == "error":
            overall_status = HealthStatus.UNHEALTHY

        for name, health in (await check_gateways(request.app.state.dispatcher)).items():
            components[name] = health
            if health.status != "ready" and overall_status == HealthStatus.HEALTHY:
                overall_status = HealthStatus.DEGRADED

        return HealthResponse(
            status=overall_status,
            service=service_name,
            version=version,
            components=components,
            timestamp=time.time(),
        )

    @router.get("/health/live")
    async def liveness_probe():
        """Always 200 while the process is serving."""
        return {"status": "alive"}

    @router.get("/health/ready")
    async def readiness_probe(request: Request):
        """503 while the store is unreachable."""
        store_health = await check_store(request.app.state.store)
        if store_health.status == "error":
            return Response(
                content='{"status": "not_ready", "reason": "store_unavailable"}',
                status_code=503,
                media_type="application/json",
            )
        return {"status": "ready"}

    return router
