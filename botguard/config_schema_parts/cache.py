"""Config schema: Redis, cache, and request throttling settings.

Synopsis:
Defines the shared Redis URL, Flask-Caching backend, and Flask-Limiter keys.

Glossary:
- Flask-Limiter: Coarse app-wide request limits applied to reporting routes.
"""

# --- Cache fields ---
# Purpose: Provide Redis/cache configuration definitions.
FIELDS = [
    {
        "key": "REDIS_URL",
        "cast": "str",
        "default": None,
        "description": "Shared Redis URL for counters, cache, and limiter storage.",
        "required_in": ("production",),
        "secret": True,
    },
    {
        "key": "REDIS_POOL_MAX_CONNECTIONS",
        "cast": "int",
        "default": 50,
        "description": "Connections per worker in the shared Redis pool (0 = unbounded).",
        "min_value": 0,
    },
    {
        "key": "REDIS_POOL_TIMEOUT",
        "cast": "int",
        "default": 5,
        "description": "Seconds to wait for a free pooled Redis connection.",
        "min_value": 1,
    },
    {
        "key": "REDIS_SOCKET_TIMEOUT",
        "cast": "int",
        "default": 2,
        "description": "Redis connect and socket timeout in seconds.",
        "min_value": 1,
    },
    {
        "key": "CACHE_TYPE",
        "cast": "str",
        "default": "SimpleCache",
        "description": "Flask-Caching backend (RedisCache when REDIS_URL is set).",
    },
    {
        "key": "CACHE_DEFAULT_TIMEOUT",
        "cast": "int",
        "default": 120,
        "description": "Default cache timeout in seconds.",
        "min_value": 0,
    },
    {
        "key": "SECURITY_SUMMARY_CACHE_TTL",
        "cast": "int",
        "default": 30,
        "description": "Seconds a security summary payload stays cached.",
        "min_value": 0,
    },
    {
        "key": "RATELIMIT_STORAGE_URI",
        "cast": "str",
        "default": "memory://",
        "description": "Flask-Limiter storage backend.",
    },
    {
        "key": "RATELIMIT_ENABLED",
        "cast": "bool",
        "default": True,
        "description": "Enable app-wide Flask-Limiter limits.",
    },
    {
        "key": "RATELIMIT_DEFAULT",
        "cast": "str",
        "default": "5000 per hour;1000 per minute",
        "description": "App-wide default limits (semicolon separated).",
        "note": "The bot-detection endpoint is exempt; it runs its own adaptive limiter.",
    },
]

# --- Cache section ---
# Purpose: Provide section metadata for checklist grouping.
SECTION = {
    "key": "cache",
    "title": "Redis, Cache & Throttling",
    "note": "Point every worker at the same Redis instance in production.",
}
