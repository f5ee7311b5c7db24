"""gunicorn settings for the botguard API.

Every value can be overridden with a ``GUNICORN_*`` environment variable;
``PORT`` and ``WEB_CONCURRENCY`` follow the usual platform conventions.
"""

from __future__ import annotations

import logging
import multiprocessing
import os

logger = logging.getLogger("gunicorn.config")


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("%s=%r is not an integer; using %s", name, raw, default)
        return default


def _worker_count() -> int:
    # Two per core, between 2 and 8, unless set explicitly.
    fallback = max(2, min(8, multiprocessing.cpu_count() * 2))
    for name in ("GUNICORN_WORKERS", "WEB_CONCURRENCY"):
        if os.environ.get(name, "").strip():
            return _int_env(name, fallback)
    return min(fallback, _int_env("GUNICORN_MAX_WORKERS", fallback))


bind = f"0.0.0.0:{_int_env('PORT', 5000)}"
backlog = _int_env("GUNICORN_BACKLOG", 2048)

# Scoring waits on the database and Redis, so cooperative workers fit.
worker_class = os.environ.get("GUNICORN_WORKER_CLASS", "gevent")
workers = _worker_count()
worker_connections = _int_env("GUNICORN_WORKER_CONNECTIONS", 1000)

timeout = _int_env("GUNICORN_TIMEOUT", 30)
keepalive = _int_env("GUNICORN_KEEPALIVE", 5)
max_requests = _int_env("GUNICORN_MAX_REQUESTS", 5000)
max_requests_jitter = _int_env("GUNICORN_MAX_REQUESTS_JITTER", 250)

# Workers rebuild the Redis pool for their own pid after fork.
preload_app = True

accesslog = "-"
errorlog = "-"
loglevel = os.environ.get("GUNICORN_LOG_LEVEL", "info")
access_log_format = '%(h)s "%(r)s" %(s)s %(b)s "%(a)s" %(D)sus'

proc_name = "botguard"

# Detection payloads are small JSON bodies; keep header limits tight.
limit_request_line = 4096
limit_request_fields = 50
limit_request_field_size = 8190


def when_ready(server) -> None:
    server.log.info(
        "botguard serving on %s with %s %s workers (timeout=%ss)",
        bind,
        workers,
        worker_class,
        timeout,
    )


def post_fork(server, worker) -> None:
    server.log.debug("Worker %s forked", worker.pid)
