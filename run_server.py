#!/usr/bin/env python
"""
Server Entry Point

Usage:
    Development:  python run_server.py --dev
    Production:   python run_server.py
    Gunicorn:     python run_server.py --gunicorn
                  (same as: gunicorn invoice_analytics.main:app -c gunicorn.conf.py)
"""

import argparse
import subprocess

import structlog

from invoice_analytics.config import get_settings
from invoice_analytics.config.logging import configure_logging

APP_PATH = "invoice_analytics.main:app"

logger = structlog.get_logger(__name__)


def run_dev_server(port: int):
    """Run development server with auto-reload."""
    import uvicorn

    uvicorn.run(
        APP_PATH,
        host="127.0.0.1",
        port=port,
        reload=True,
        reload_dirs=["invoice_analytics"],
        log_level="debug",
        access_log=True,
    )


def run_prod_server(port: int):
    """Run production server with Uvicorn workers."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        APP_PATH,
        host=settings.api_host,
        port=port,
        workers=settings.api_workers,
        log_level=settings.monitoring.log_level.lower(),
        access_log=True,
        proxy_headers=True,
        forwarded_allow_ips="*",
        server_header=False,
    )


def run_gunicorn():
    """Run with Gunicorn (recommended for production)."""
    subprocess.run(["gunicorn", APP_PATH, "-c", "gunicorn.conf.py"], check=True)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Invoice Analytics API Server")
    parser.add_argument("--dev", action="store_true", help="Run in development mode with auto-reload")
    parser.add_argument("--gunicorn", action="store_true", help="Run with Gunicorn (production)")
    parser.add_argument("--port", type=int, default=None, help="Port to run on (default: API_PORT)")
    args = parser.parse_args()

    configure_logging()
    port = args.port or get_settings().api_port

    if args.dev:
        logger.info("Starting development server", port=port)
        run_dev_server(port)
    elif args.gunicorn:
        logger.info("Starting production server with Gunicorn")
        run_gunicorn()
    else:
        logger.info("Starting production server with Uvicorn", port=port)
        run_prod_server(port)
