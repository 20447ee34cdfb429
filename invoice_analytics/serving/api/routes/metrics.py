"""
Client Performance Endpoints

Browsers post performance samples and web vitals here. Samples are
validated, rolled up per metric name and checked for performance issues.
"""

import json
from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends, Request

from invoice_analytics.analytics.errors import ValidationError
from invoice_analytics.config.settings import Settings
from invoice_analytics.metrics.aggregator import ClientContext, MetricsRollup, ingest_metrics
from invoice_analytics.metrics.anomaly import PerformanceAnomalyDetector
from invoice_analytics.serving.api.dependencies import get_app_settings, get_detector, get_rollup

router = APIRouter()
logger = structlog.get_logger(__name__)


async def _json_body(request: Request, error: str) -> Any:
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ValidationError(error) from None


@router.post("/performance")
async def ingest_performance(
    request: Request,
    settings: Settings = Depends(get_app_settings),
    detector: PerformanceAnomalyDetector = Depends(get_detector),
    rollup: Optional[MetricsRollup] = Depends(get_rollup),
) -> Dict[str, Any]:
    """
    Ingest a batch of performance samples.

    Body: {"metrics": [{"name": ..., "value": ..., "timestamp": ...}, ...]}
    """
    if not settings.metrics.enabled:
        return {"success": True, "processed": 0, "aggregated": 0, "anomalies": []}

    body = await _json_body(request, "Invalid performance data")
    if not isinstance(body, dict):
        raise ValidationError("Invalid performance data")

    result = await ingest_metrics(
        body.get("metrics"),
        ClientContext.from_headers(request.headers),
        detector=detector,
        rollup=rollup,
        window_size=settings.metrics.recent_window_size,
    )

    return {
        "success": True,
        "processed": result.processed_count,
        "aggregated": result.aggregated_metric_count,
        "anomalies": [signal.to_dict() for signal in result.signals],
    }


@router.post("/web-vitals")
async def ingest_web_vital(
    request: Request,
    settings: Settings = Depends(get_app_settings),
    detector: PerformanceAnomalyDetector = Depends(get_detector),
    rollup: Optional[MetricsRollup] = Depends(get_rollup),
) -> Dict[str, Any]:
    """Ingest a single web vital such as LCP, CLS or INP"""
    if not settings.metrics.enabled:
        return {"success": True}

    body = await _json_body(request, "Invalid web vital data")
    if not isinstance(body, dict):
        raise ValidationError("Invalid web vital data")

    context = ClientContext.from_headers(request.headers)
    await ingest_metrics(
        [body],
        context,
        detector=detector,
        rollup=rollup,
        window_size=settings.metrics.recent_window_size,
    )

    logger.info(
        "Web vital received",
        name=body.get("name"),
        value=body.get("value"),
        rating=body.get("rating"),
        page=context.referer,
        connection_speed=context.connection_speed,
    )
    return {"success": True}
