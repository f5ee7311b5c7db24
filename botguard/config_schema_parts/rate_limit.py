"""Config schema: Adaptive rate limiter policy.

Synopsis:
Defines the fixed window, quota, and escalating block durations for the
per-identifier limiter, and its Redis hot-path toggles.

Glossary:
- Violation: One request over quota inside an active window.
- Escalating block: consecutive violations x step, capped at the maximum.
"""

# --- Rate limit fields ---
# Purpose: Provide limiter policy configuration definitions.
FIELDS = [
    {
        "key": "RATE_LIMIT_WINDOW_SECONDS",
        "cast": "int",
        "default": 60,
        "description": "Fixed window length in seconds.",
        "min_value": 1,
    },
    {
        "key": "RATE_LIMIT_MAX_REQUESTS",
        "cast": "int",
        "default": 60,
        "description": "Requests allowed per identifier per window.",
        "min_value": 1,
    },
    {
        "key": "RATE_LIMIT_BLOCK_STEP_SECONDS",
        "cast": "int",
        "default": 300,
        "description": "Block seconds added per consecutive violation.",
        "min_value": 1,
    },
    {
        "key": "RATE_LIMIT_BLOCK_MAX_SECONDS",
        "cast": "int",
        "default": 3600,
        "description": "Maximum block duration after escalation.",
        "min_value": 1,
    },
    {
        "key": "RATE_LIMIT_REDIS_ENABLED",
        "cast": "bool",
        "default": True,
        "description": "Count requests in Redis when REDIS_URL is configured.",
        "note": "The database row is then written only on window start and on violations.",
    },
    {
        "key": "RATE_LIMIT_REDIS_PREFIX",
        "cast": "str",
        "default": "botguard:v1",
        "description": "Redis key prefix for limiter counters.",
        "note": "Change only when isolating environments sharing one Redis instance.",
    },
]

# --- Rate limit section ---
# Purpose: Provide section metadata for checklist grouping.
SECTION = {
    "key": "rate_limit",
    "title": "Adaptive Rate Limiter",
    "note": "Block duration grows linearly with consecutive violations up to the cap.",
}
