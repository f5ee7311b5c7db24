"""Per-worker Redis connection pool.

One ``BlockingConnectionPool`` per process backs Flask-Caching, the
Flask-Limiter storage and the adaptive rate limiter counters. gunicorn
preloads the app before forking, so the pool is keyed by pid and rebuilt the
first time a worker asks for it.
"""

from __future__ import annotations

import logging
import os
from threading import Lock

import redis
from flask import Flask

from ..config_schema import setting

logger = logging.getLogger(__name__)

_POOL_KEY = "botguard_redis_pool"
_POOL_LOCK = Lock()


def _connect(app: Flask, redis_url: str) -> redis.BlockingConnectionPool:
    socket_timeout = setting(app.config, "REDIS_SOCKET_TIMEOUT")
    return redis.BlockingConnectionPool.from_url(
        redis_url,
        max_connections=setting(app.config, "REDIS_POOL_MAX_CONNECTIONS") or None,
        timeout=setting(app.config, "REDIS_POOL_TIMEOUT"),
        socket_timeout=socket_timeout,
        socket_connect_timeout=socket_timeout,
    )


def get_redis_pool(app: Flask) -> redis.BlockingConnectionPool | None:
    """Return this worker's pool, or None when ``REDIS_URL`` is not configured."""
    redis_url = app.config.get("REDIS_URL")
    if not redis_url:
        return None

    pid = os.getpid()
    entry = app.extensions.get(_POOL_KEY)
    if entry is not None and entry[0] == pid:
        return entry[1]

    with _POOL_LOCK:
        entry = app.extensions.get(_POOL_KEY)
        if entry is not None and entry[0] == pid:
            return entry[1]
        # A pool inherited from the pre-fork parent stays with the parent.
        pool = _connect(app, redis_url)
        app.extensions[_POOL_KEY] = (pid, pool)

    logger.info("Redis pool ready (pid=%s, max_connections=%s)", pid, pool.max_connections)
    return pool


def get_redis_client(app: Flask) -> redis.Redis | None:
    pool = get_redis_pool(app)
    if pool is None:
        return None
    return redis.Redis(connection_pool=pool)
