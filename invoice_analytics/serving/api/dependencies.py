"""
API Dependencies

Components are built once per application and kept on `app.state`;
routes reach them through these dependencies.
"""

from typing import Any, Awaitable, Callable, Optional

import structlog
from fastapi import HTTPException, Request

from invoice_analytics.analytics.engine import AnalyticsEngine
from invoice_analytics.analytics.store import InvoiceStore
from invoice_analytics.config.settings import Settings
from invoice_analytics.instrumentation import CACHE_LOOKUPS
from invoice_analytics.metrics.aggregator import MetricsRollup
from invoice_analytics.metrics.anomaly import PerformanceAnomalyDetector
from invoice_analytics.serving.cache import AnalyticsCache, org_tag

logger = structlog.get_logger(__name__)


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> InvoiceStore:
    return request.app.state.store


def get_engine(request: Request) -> AnalyticsEngine:
    return request.app.state.analytics


def get_cache(request: Request) -> AnalyticsCache:
    return request.app.state.cache


def get_detector(request: Request) -> PerformanceAnomalyDetector:
    return request.app.state.detector


def get_rollup(request: Request) -> Optional[MetricsRollup]:
    return request.app.state.rollup


def get_org_id(request: Request) -> str:
    """Organization resolved by the upstream auth layer"""
    header = request.app.state.settings.security.org_header
    org_id = (request.headers.get(header) or "").strip()
    if not org_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return org_id


async def cached_response(
    cache: AnalyticsCache,
    key: str,
    ttl: int,
    org_id: str,
    compute: Callable[[], Awaitable[Any]],
) -> Any:
    """
    Serve a JSON payload from the cache or compute and store it.

    Cache failures never fail the request; the payload is computed instead.
    """
    try:
        cached = await cache.get(key)
    except Exception as e:
        logger.warning("Cache read failed", key=key, error=str(e))
        cached = None

    if cached is not None:
        CACHE_LOOKUPS.labels(result="hit").inc()
        logger.debug("Returning cached response", key=key)
        return cached

    CACHE_LOOKUPS.labels(result="miss").inc()
    payload = await compute()
    try:
        await cache.set(key, payload, ttl, tags=[org_tag(org_id)])
    except Exception as e:
        logger.warning("Cache write failed", key=key, error=str(e))
    return payload
