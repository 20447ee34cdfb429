"""
API Routes Module
"""
from .health import router as health_router
from .analytics import router as analytics_router
from .dashboard import router as dashboard_router
from .metrics import router as metrics_router
from .reports import router as reports_router

__all__ = [
    "health_router",
    "analytics_router",
    "dashboard_router",
    "metrics_router",
    "reports_router",
]
