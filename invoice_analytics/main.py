"""
FastAPI Production Application

Main entry point for the Invoice Analytics API.
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from invoice_analytics.analytics.engine import AnalyticsEngine
from invoice_analytics.analytics.errors import AnalyticsError, ValidationError
from invoice_analytics.analytics.store import InvoiceStore
from invoice_analytics.config import Settings, get_settings
from invoice_analytics.config.logging import configure_logging
from invoice_analytics.database.connection import close_database, get_session_factory, init_database
from invoice_analytics.database.store import SqlInvoiceStore
from invoice_analytics.instrumentation import render_latest
from invoice_analytics.metrics.aggregator import MetricsRollup
from invoice_analytics.metrics.anomaly import PerformanceAnomalyDetector
from invoice_analytics.serving.api.middleware import (
    RateLimitMiddleware,
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
)
from invoice_analytics.serving.api.routes import (
    analytics_router,
    dashboard_router,
    health_router,
    metrics_router,
    reports_router,
)
from invoice_analytics.serving.cache import AnalyticsCache, build_cache

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    settings: Settings = app.state.settings
    configure_logging(settings=settings)

    logger.info("Starting Invoice Analytics API", environment=settings.app_env, version=settings.version)

    owns_database = app.state.store is None
    owns_cache = app.state.cache is None

    if owns_database:
        await init_database()
        app.state.store = SqlInvoiceStore(get_session_factory(), settings.database.query_timeout)
        app.state.analytics = AnalyticsEngine(app.state.store, settings.analytics)
        logger.info("Record store initialized")

    if owns_cache:
        app.state.cache = await build_cache(settings)
        logger.info("Cache initialized", backend=type(app.state.cache).__name__)

    yield

    logger.info("Shutting down...")
    if owns_cache:
        await app.state.cache.close()
    if owns_database:
        await close_database()


async def analytics_error_handler(request: Request, exc: AnalyticsError) -> JSONResponse:
    if isinstance(exc, ValidationError):
        logger.warning("Request rejected", path=request.url.path, error=exc.message)
    else:
        logger.error("Analytics request failed", path=request.url.path, error=exc.message)
    return JSONResponse({"error": exc.public_message}, status_code=exc.status_code)


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse({"error": exc.detail}, status_code=exc.status_code, headers=getattr(exc, "headers", None))


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if errors:
        location = ".".join(str(part) for part in errors[0].get("loc", ()) if part != "query")
        message = f"Invalid {location}: {errors[0].get('msg', 'invalid value')}"
    else:
        message = "Invalid request"
    logger.warning("Request rejected", path=request.url.path, error=message)
    return JSONResponse({"error": message}, status_code=400)


def create_app(
    store: Optional[InvoiceStore] = None,
    cache: Optional[AnalyticsCache] = None,
    settings: Optional[Settings] = None,
    analytics: Optional[AnalyticsEngine] = None,
) -> FastAPI:
    """
    Build the API application.

    Components passed in are used as-is; the lifespan creates the SQL store
    and the configured cache for whatever is left out.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="Invoice Analytics API",
        description="Organization-scoped invoice analytics and client performance metrics",
        version=settings.version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.store = store
    app.state.cache = cache
    app.state.analytics = analytics or (AnalyticsEngine(store, settings.analytics) if store is not None else None)
    app.state.detector = PerformanceAnomalyDetector.from_settings(settings.metrics)
    app.state.rollup = (
        MetricsRollup(settings.metrics.recent_window_size) if settings.metrics.retain_across_batches else None
    )

    app.add_exception_handler(AnalyticsError, analytics_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    # CORS Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.security.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Compression
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    # Custom middleware
    app.add_middleware(
        RequestLoggingMiddleware,
        org_header=settings.security.org_header,
        trusted_proxies=settings.security.trusted_proxies,
    )
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        RateLimitMiddleware,
        max_requests=settings.security.rate_limit_requests,
        window_seconds=settings.security.rate_limit_window_seconds,
        trusted_proxies=settings.security.trusted_proxies,
    )

    # API routes
    app.include_router(health_router, prefix="/api/v1", tags=["Health"])
    app.include_router(analytics_router, prefix="/api/v1/analytics", tags=["Analytics"])
    app.include_router(metrics_router, prefix="/api/v1/analytics", tags=["Performance"])
    app.include_router(dashboard_router, prefix="/api/v1/dashboard", tags=["Dashboard"])
    app.include_router(reports_router, prefix="/api/v1/reports", tags=["Reports"])

    @app.get("/api/v1/info")
    async def api_info():
        """API information endpoint."""
        return {
            "name": "Invoice Analytics API",
            "version": settings.version,
            "environment": settings.app_env,
            "documentation": "/docs",
        }

    if settings.monitoring.prometheus_enabled:
        @app.get("/metrics", include_in_schema=False)
        async def prometheus_metrics():
            payload, content_type = render_latest()
            return Response(payload, media_type=content_type)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
