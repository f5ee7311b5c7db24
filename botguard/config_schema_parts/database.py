"""Config schema: Database settings.

Synopsis:
Defines the SQLAlchemy connection URL and pool tuning keys.
"""

# --- Database fields ---
# Purpose: Provide database configuration definitions.
FIELDS = [
    {
        "key": "DATABASE_URL",
        "cast": "str",
        "default": None,
        "description": "SQLAlchemy database URL (postgres:// is normalized).",
        "required_in": ("staging", "production"),
        "secret": True,
        "note": "Development falls back to instance/botguard.db (SQLite).",
    },
    {
        "key": "SQLALCHEMY_POOL_SIZE",
        "cast": "int",
        "default": 20,
        "description": "Connection pool size per worker.",
        "min_value": 1,
    },
    {
        "key": "SQLALCHEMY_MAX_OVERFLOW",
        "cast": "int",
        "default": 20,
        "description": "Extra connections allowed above the pool size.",
        "min_value": 0,
    },
    {
        "key": "SQLALCHEMY_POOL_TIMEOUT",
        "cast": "int",
        "default": 30,
        "description": "Seconds to wait for a pooled connection.",
        "min_value": 1,
    },
    {
        "key": "SQLALCHEMY_CREATE_ALL",
        "cast": "bool",
        "default": False,
        "description": "Create tables with db.create_all() at startup.",
        "note": "Local convenience only; Alembic migrations are the source of truth.",
    },
]

# --- Database section ---
# Purpose: Provide section metadata for checklist grouping.
SECTION = {
    "key": "database",
    "title": "Database",
    "note": "Run `flask db upgrade` after changing DATABASE_URL.",
}
