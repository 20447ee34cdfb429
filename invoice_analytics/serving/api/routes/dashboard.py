"""
Dashboard API Endpoints
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends

from invoice_analytics.analytics.engine import AnalyticsEngine
from invoice_analytics.analytics.schemas import DashboardStats
from invoice_analytics.config.settings import Settings
from invoice_analytics.serving.api.dependencies import (
    cached_response,
    get_app_settings,
    get_cache,
    get_engine,
    get_org_id,
)
from invoice_analytics.serving.cache import AnalyticsCache, CacheKeys

router = APIRouter()


@router.get("/stats", response_model=DashboardStats)
async def get_dashboard_stats(
    org_id: str = Depends(get_org_id),
    engine: AnalyticsEngine = Depends(get_engine),
    cache: AnalyticsCache = Depends(get_cache),
    settings: Settings = Depends(get_app_settings),
) -> Dict[str, Any]:
    """Revenue paid this month, overdue count, average payment time and newest invoices"""

    async def compute():
        stats = await engine.compute_dashboard_stats(org_id)
        return stats.model_dump(mode="json")

    return await cached_response(
        cache,
        CacheKeys.dashboard(org_id),
        settings.cache.default_ttl,
        org_id,
        compute,
    )
