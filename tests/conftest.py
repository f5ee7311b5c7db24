"""
Pytest configuration and shared fixtures for botguard tests.
"""
import os
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

# Config is resolved at import time; pin the environment before importing the app.
os.environ["FLASK_ENV"] = "testing"
os.environ.pop("REDIS_URL", None)
os.environ.pop("SQLALCHEMY_CREATE_ALL", None)

from botguard import create_app  # noqa: E402
from botguard.extensions import db  # noqa: E402
from botguard.services.bot_detection import (  # noqa: E402
    AdaptiveRateLimiter,
    BotDetectionService,
    SecurityReportService,
)

BROWSER_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/126.0 Safari/537.36"
)
BROWSER_HEADERS = {
    "accept": "text/html,application/xhtml+xml",
    "accept-language": "en-US,en;q=0.9",
    "accept-encoding": "gzip, deflate, br",
}


class FrozenClock:
    """Mutable UTC clock patched into every service ``_utcnow``."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeRedis:
    """In-memory subset of redis-py used by the limiter hot path."""

    def __init__(self, now_provider):
        self._now = now_provider
        self._values: dict[str, str] = {}
        self._expires_at: dict[str, datetime] = {}

    def _purge_if_expired(self, key: str) -> None:
        expires_at = self._expires_at.get(key)
        if expires_at is None:
            return
        if self._now() >= expires_at:
            self._values.pop(key, None)
            self._expires_at.pop(key, None)

    def incrby(self, key: str, amount: int) -> int:
        self._purge_if_expired(key)
        current = int(self._values.get(key, "0")) + int(amount)
        self._values[key] = str(current)
        return current

    def incr(self, key: str) -> int:
        return self.incrby(key, 1)

    def flushall(self) -> bool:
        self._values.clear()
        self._expires_at.clear()
        return True

    def expire(self, key: str, ttl_seconds: int) -> bool:
        self._purge_if_expired(key)
        if key not in self._values:
            return False
        self._expires_at[key] = self._now() + timedelta(seconds=int(ttl_seconds))
        return True

    def ttl(self, key: str) -> int:
        self._purge_if_expired(key)
        if key not in self._values:
            return -2
        expires_at = self._expires_at.get(key)
        if expires_at is None:
            return -1
        return int((expires_at - self._now()).total_seconds())

    def get(self, key: str):
        self._purge_if_expired(key)
        return self._values.get(key)


@pytest.fixture(scope='function')
def app():
    """Create and configure a new app instance for each test."""
    db_fd, db_path = tempfile.mkstemp(suffix=".db")

    app = create_app({
        'TESTING': True,
        'DATABASE_URL': f'sqlite:///{db_path}',
        'SECRET_KEY': 'test-secret-key',
        'RATELIMIT_ENABLED': False,
        'BOT_DETECTION_ADMIN_API_KEY': None,
    })

    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()

    os.close(db_fd)
    os.unlink(db_path)


@pytest.fixture
def client(app):
    """A test client for the app."""
    return app.test_client()


@pytest.fixture
def runner(app):
    """A test runner for the app's Click commands."""
    return app.test_cli_runner()


@pytest.fixture
def app_context(app):
    with app.app_context():
        yield app


@pytest.fixture
def clock(monkeypatch):
    frozen = FrozenClock(datetime(2026, 3, 2, 12, 0, 0, tzinfo=timezone.utc))
    for target in (AdaptiveRateLimiter, BotDetectionService, SecurityReportService):
        monkeypatch.setattr(target, "_utcnow", staticmethod(frozen))
    return frozen


@pytest.fixture
def fake_redis(clock):
    return FakeRedis(clock)


def detection_payload(**overrides):
    payload = {
        "userAgent": BROWSER_UA,
        "ip": "203.0.113.10",
        "path": "/pricing",
        "headers": dict(BROWSER_HEADERS),
    }
    payload.update(overrides)
    return payload
