"""
Gunicorn Configuration

Runs the FastAPI app with Uvicorn workers. Each worker owns its own
database engine, cache client and rate-limit state.
"""

import multiprocessing
import os

# Server socket
bind = os.getenv("BIND", f"{os.getenv('API_HOST', '0.0.0.0')}:{os.getenv('API_PORT', '8000')}")
backlog = 2048

# Worker processes
workers = int(os.getenv("API_WORKERS", multiprocessing.cpu_count() * 2 + 1))
worker_class = "uvicorn.workers.UvicornWorker"
max_requests = 10000
max_requests_jitter = 1000
# Analytics queries are bounded by POSTGRES_QUERY_TIMEOUT well below this
timeout = 60
keepalive = 5
graceful_timeout = 30

proc_name = "invoice-analytics-api"

# Logging
errorlog = "-"
loglevel = os.getenv("LOG_LEVEL", "info").lower()
accesslog = "-"
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s" %(D)s'


def post_fork(server, worker):
    """Called after a worker has been forked."""
    server.log.info("Worker spawned (pid: %s)", worker.pid)


def worker_abort(worker):
    """Called when worker receives SIGABRT signal, usually a timeout."""
    worker.log.warning("Worker aborted (pid: %s)", worker.pid)
