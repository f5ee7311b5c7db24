"""Config schema: Core runtime settings.

Synopsis:
Defines environment keys that control runtime mode, secrets, and logging.

Glossary:
- Core runtime: Base settings that affect application startup behavior.
"""

# --- Core fields ---
# Purpose: Provide core runtime configuration definitions.
FIELDS = [
    {
        "key": "FLASK_ENV",
        "cast": "str",
        "default": "development",
        "description": "Runtime environment selector.",
        "required": True,
        "options": ("development", "testing", "staging", "production"),
    },
    {
        "key": "FLASK_SECRET_KEY",
        "cast": "str",
        "default": None,
        "description": "Flask signing secret.",
        "required_in": ("staging", "production"),
        "secret": True,
        "default_by_env": {
            "development": "devkey-please-change-in-production",
            "testing": "devkey-please-change-in-production",
        },
    },
    {
        "key": "LOG_LEVEL",
        "cast": "str",
        "default": "WARNING",
        "description": "Application logging level.",
        "default_by_env": {"staging": "INFO", "production": "INFO"},
    },
    {
        "key": "LOG_REDACT_PII",
        "cast": "bool",
        "default": True,
        "description": "Redact emails, tokens, and api keys in log output.",
    },
    {
        "key": "ENABLE_PROXY_FIX",
        "cast": "bool",
        "default": False,
        "description": "Wrap the app in Werkzeug ProxyFix.",
        "required_in": ("staging", "production"),
        "note": "Client addresses resolved server-side depend on trusted proxy headers.",
    },
    {
        "key": "PROXY_FIX_X_FOR",
        "cast": "int",
        "default": 1,
        "description": "Number of X-Forwarded-For headers to trust.",
        "min_value": 0,
    },
    {
        "key": "PROXY_FIX_X_PROTO",
        "cast": "int",
        "default": 1,
        "description": "Number of X-Forwarded-Proto headers to trust.",
        "min_value": 0,
    },
]

# --- Core section ---
# Purpose: Provide section metadata for checklist grouping.
SECTION = {
    "key": "core",
    "title": "Core Runtime",
    "note": "Set FLASK_ENV and FLASK_SECRET_KEY before deploying.",
}
