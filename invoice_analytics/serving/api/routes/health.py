"""
Health Check Endpoints

Provides health and readiness checks for orchestration systems.
"""

import time
from datetime import datetime
from typing import Any, Dict

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel

from invoice_analytics.analytics.store import InvoiceStore
from invoice_analytics.analytics.window import utcnow
from invoice_analytics.config.settings import Settings
from invoice_analytics.serving.api.dependencies import get_app_settings, get_cache, get_store
from invoice_analytics.serving.cache import AnalyticsCache

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response"""
    status: str
    version: str
    environment: str
    timestamp: datetime
    checks: Dict[str, Any]


async def check_store_health(store: InvoiceStore) -> Dict[str, Any]:
    """Ping the record store and report latency"""
    try:
        start = time.perf_counter()
        await store.ping()
        latency_ms = (time.perf_counter() - start) * 1000
        return {"status": "healthy", "latency_ms": round(latency_ms, 2)}
    except Exception as e:
        return {"status": "unhealthy", "error": str(e)}


@router.get("/health", response_model=HealthResponse)
async def health_check(
    store: InvoiceStore = Depends(get_store),
    cache: AnalyticsCache = Depends(get_cache),
    settings: Settings = Depends(get_app_settings),
) -> HealthResponse:
    """
    Comprehensive health check endpoint.

    Checks:
    - Record store connectivity
    - Cache connectivity (degraded, not unhealthy, when down)
    """
    checks = {}
    overall_status = "healthy"

    checks["database"] = await check_store_health(store)
    if checks["database"]["status"] != "healthy":
        overall_status = "unhealthy"

    try:
        await cache.ping()
        checks["cache"] = {"status": "healthy", "backend": type(cache).__name__}
    except Exception as e:
        checks["cache"] = {"status": "unhealthy", "error": str(e)}
        if overall_status == "healthy":
            overall_status = "degraded"

    return HealthResponse(
        status=overall_status,
        version=settings.version,
        environment=settings.app_env,
        timestamp=utcnow(),
        checks=checks,
    )


@router.get("/health/live")
async def liveness_check() -> Dict[str, str]:
    """
    Kubernetes liveness probe endpoint.

    Returns 200 if the application is running.
    """
    return {"status": "alive"}


@router.get("/health/ready")
async def readiness_check(response: Response, store: InvoiceStore = Depends(get_store)) -> Dict[str, str]:
    """
    Kubernetes readiness probe endpoint.

    Returns 503 until the record store answers.
    """
    store_health = await check_store_health(store)
    if store_health["status"] != "healthy":
        response.status_code = 503
        return {"status": "not_ready", "reason": "database_unavailable"}
    return {"status": "ready"}
