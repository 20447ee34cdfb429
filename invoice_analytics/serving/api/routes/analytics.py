"""
Analytics API Endpoints

Organization-scoped revenue analytics. Responses are cached per org and
query, tagged with the org so they can be invalidated together.
"""

from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, Query

from invoice_analytics.analytics.engine import AnalyticsEngine
from invoice_analytics.analytics.schemas import OverviewResult, PaymentPattern, RevenueTrendsResult
from invoice_analytics.config.settings import Settings
from invoice_analytics.serving.api.dependencies import (
    cached_response,
    get_app_settings,
    get_cache,
    get_engine,
    get_org_id,
)
from invoice_analytics.serving.cache import AnalyticsCache, CacheKeys, org_tag

router = APIRouter()
logger = structlog.get_logger(__name__)


def _day_start(day: Optional[date]) -> Optional[datetime]:
    if day is None:
        return None
    return datetime(day.year, day.month, day.day)


@router.get("/overview", response_model=OverviewResult)
async def get_overview(
    period: Optional[int] = Query(default=None, description="Window length in days"),
    org_id: str = Depends(get_org_id),
    engine: AnalyticsEngine = Depends(get_engine),
    cache: AnalyticsCache = Depends(get_cache),
    settings: Settings = Depends(get_app_settings),
) -> Dict[str, Any]:
    """
    Revenue overview for the trailing window.

    Includes growth against the previous window, customer stats, the
    monthly trend, status and aging distributions, top customers and
    recent activity.
    """
    window_days = settings.analytics.default_window_days if period is None else period

    async def compute():
        result = await engine.compute_overview(org_id, window_days)
        return result.model_dump(mode="json")

    return await cached_response(
        cache,
        CacheKeys.overview(org_id, window_days),
        settings.cache.overview_ttl,
        org_id,
        compute,
    )


@router.get("/revenue", response_model=RevenueTrendsResult)
async def get_revenue_trends(
    period: str = Query(default="year", description="year, quarter, month or week"),
    year: Optional[int] = None,
    quarter: Optional[int] = None,
    month: Optional[int] = None,
    start_date: Optional[date] = Query(default=None, description="First day of a weekly range"),
    org_id: str = Depends(get_org_id),
    engine: AnalyticsEngine = Depends(get_engine),
    cache: AnalyticsCache = Depends(get_cache),
    settings: Settings = Depends(get_app_settings),
) -> Dict[str, Any]:
    """Revenue trends bucketed by the granularity of the period"""

    async def compute():
        result = await engine.compute_revenue_trends(
            org_id,
            period,
            year=year,
            quarter=quarter,
            month=month,
            week_start=start_date,
        )
        return result.model_dump(mode="json")

    return await cached_response(
        cache,
        CacheKeys.revenue(org_id, period, year, quarter, month, start_date),
        settings.cache.revenue_ttl,
        org_id,
        compute,
    )


@router.get("/payment-patterns", response_model=List[PaymentPattern])
async def get_payment_patterns(
    start_date: Optional[date] = None,
    end_date: Optional[date] = Query(default=None, description="Last day included"),
    org_id: str = Depends(get_org_id),
    engine: AnalyticsEngine = Depends(get_engine),
    cache: AnalyticsCache = Depends(get_cache),
    settings: Settings = Depends(get_app_settings),
) -> List[Dict[str, Any]]:
    """Paid invoices created in the date range, bucketed by payment delay"""
    start = _day_start(start_date)
    end = _day_start(end_date) + timedelta(days=1) if end_date else None

    async def compute():
        patterns = await engine.compute_payment_patterns(org_id, start, end)
        return [pattern.model_dump(mode="json") for pattern in patterns]

    return await cached_response(
        cache,
        CacheKeys.payment_patterns(org_id, start, end),
        settings.cache.default_ttl,
        org_id,
        compute,
    )


@router.delete("/cache")
async def invalidate_cache(
    org_id: str = Depends(get_org_id),
    cache: AnalyticsCache = Depends(get_cache),
) -> Dict[str, Any]:
    """Drop every cached analytics response of the caller's organization"""
    removed = await cache.invalidate_tags([org_tag(org_id)])
    logger.info("Analytics cache invalidated", org_id=org_id, keys_removed=removed)
    return {"success": True, "invalidated": removed}
