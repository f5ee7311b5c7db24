from __future__ import annotations

from flask_caching import Cache
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy

__all__ = [
    "db",
    "migrate",
    "cache",
    "cors",
    "limiter",
]

db = SQLAlchemy()
migrate = Migrate(compare_type=True, render_as_batch=True)
cache = Cache()
cors = CORS()

# Default limits come from RATELIMIT_DEFAULT ("5000 per hour;1000 per minute").
limiter = Limiter(key_func=get_remote_address)
