"""
Gunicorn configuration for the POS webhook / sync status API.

Webhook handlers may fetch an order from the POS before answering, so the
worker timeout stays above the POS client's timeout plus its retries.
"""

import multiprocessing
import os

bind = os.getenv("BIND", "0.0.0.0:8000")
backlog = 2048

workers = int(os.getenv("WORKERS", min(multiprocessing.cpu_count() * 2 + 1, 8)))
worker_class = "uvicorn.workers.UvicornWorker"
max_requests = 10000
max_requests_jitter = 1000
timeout = int(os.getenv("WORKER_TIMEOUT", 180))
keepalive = 5
graceful_timeout = 30

proc_name = "pos-sales-analytics-api"

# Logs go to stdout; the app renders them with structlog
errorlog = "-"
accesslog = "-"
loglevel = os.getenv("LOG_LEVEL", "info").lower()


def post_fork(server, worker):
    """Log worker startup."""
    server.log.info("Worker spawned (pid: %s)", worker.pid)
