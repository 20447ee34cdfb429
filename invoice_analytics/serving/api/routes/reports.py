"""
Report Export Endpoints
"""

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query, Response

from invoice_analytics.analytics.engine import AnalyticsEngine
from invoice_analytics.analytics.export import (
    report_filename,
    revenue_report_csv,
    validate_export_format,
)
from invoice_analytics.serving.api.dependencies import get_engine, get_org_id

router = APIRouter()
logger = structlog.get_logger(__name__)


@router.get("/export")
async def export_revenue_report(
    period: str = Query(default="year", description="year, quarter or month"),
    year: Optional[int] = None,
    quarter: Optional[int] = None,
    month: Optional[int] = None,
    format: str = Query(default="csv", description="Export format"),
    org_id: str = Depends(get_org_id),
    engine: AnalyticsEngine = Depends(get_engine),
) -> Response:
    """Revenue report for the period as a downloadable CSV"""
    validate_export_format(format)
    result = await engine.compute_revenue_trends(org_id, period, year=year, quarter=quarter, month=month)
    filename = report_filename(result, year)

    logger.info("Revenue report exported", org_id=org_id, period=result.period, filename=filename)
    return Response(
        content=revenue_report_csv(result),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
