import logging
import threading
from datetime import timedelta

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from botguard.extensions import db
from botguard.models import AdvancedRateLimit
from botguard.services.bot_detection import AdaptiveRateLimiter, RateLimitPolicy

IP = "198.51.100.20"


def _row(identifier=IP) -> AdvancedRateLimit:
    db.session.expire_all()
    return AdvancedRateLimit.query.filter_by(identifier=identifier, identifier_type="ip").one()


def _exhaust(limiter, count, identifier=IP):
    return [limiter.check_rate_limit(identifier, "/pricing") for _ in range(count)]


@pytest.fixture
def limiter():
    return AdaptiveRateLimiter(RateLimitPolicy(redis_enabled=False))


def test_first_request_creates_row(app_context, clock, limiter):
    result = limiter.check_rate_limit(IP, "/pricing")

    assert result.allowed is True
    assert result.remaining == 59
    assert result.reset == clock.now + timedelta(seconds=60)
    assert result.retry_after is None

    row = _row()
    assert row.request_count == 1
    assert row.is_blocked is False
    assert row.consecutive_violations == 0
    assert row.last_endpoint == "/pricing"


def test_sixty_requests_allowed_then_first_violation_blocks_for_300s(app_context, clock, limiter):
    results = _exhaust(limiter, 60)

    assert all(r.allowed for r in results)
    assert [r.remaining for r in results[-3:]] == [2, 1, 0]
    assert results[-1].reset == clock.now + timedelta(seconds=60)

    denied = limiter.check_rate_limit(IP, "/pricing")

    assert denied.allowed is False
    assert denied.remaining == 0
    assert denied.retry_after == 300
    assert denied.reset == clock.now + timedelta(seconds=300)

    row = _row()
    assert row.request_count == 61
    assert row.is_blocked is True
    assert row.consecutive_violations == 1
    assert row.total_violations == 1
    assert AdaptiveRateLimiter._as_utc(row.block_expires_at) == clock.now + timedelta(seconds=300)


def test_escalation_follows_linear_formula_capped_at_twelfth(app_context, clock, limiter):
    _exhaust(limiter, 60)

    retry_afters = [limiter.check_rate_limit(IP, "/pricing").retry_after for _ in range(13)]

    assert retry_afters[0] == 300
    assert retry_afters[1] == 600
    # min(violations x 300, 3600): the ninth violation is 2700, the cap arrives at the twelfth.
    assert retry_afters[8] == 2700
    assert retry_afters[11] == 3600
    assert retry_afters[12] == 3600

    row = _row()
    # The counter keeps climbing while blocked.
    assert row.request_count == 73
    assert row.consecutive_violations == 13
    assert row.total_violations == 13


def test_expired_window_resets_counter_and_consecutive_violations(app_context, clock, limiter):
    _exhaust(limiter, 62)
    assert _row().consecutive_violations == 2

    clock.advance(seconds=60)
    result = limiter.check_rate_limit(IP, "/checkout")

    assert result.allowed is True
    assert result.remaining == 59
    assert result.reset == clock.now + timedelta(seconds=60)

    row = _row()
    assert row.request_count == 1
    assert row.consecutive_violations == 0
    assert row.total_violations == 2
    assert row.is_blocked is False
    assert row.block_expires_at is None
    assert AdaptiveRateLimiter._as_utc(row.window_start) == clock.now


def test_reset_reports_original_window_end(app_context, clock, limiter):
    start = clock.now
    limiter.check_rate_limit(IP, "/")
    clock.advance(seconds=45)

    result = limiter.check_rate_limit(IP, "/")

    assert result.remaining == 58
    assert result.reset == start + timedelta(seconds=60)


def test_identifiers_are_counted_independently(app_context, clock, limiter):
    _exhaust(limiter, 61, identifier="192.0.2.1")

    result = limiter.check_rate_limit("192.0.2.2", "/")

    assert result.allowed is True
    assert result.remaining == 59


def test_policy_from_config_clamps_block_ceiling():
    policy = RateLimitPolicy.from_config(
        {
            "RATE_LIMIT_BLOCK_STEP_SECONDS": "600",
            "RATE_LIMIT_BLOCK_MAX_SECONDS": "120",
            "RATE_LIMIT_MAX_REQUESTS": "-5",
            "RATE_LIMIT_REDIS_ENABLED": "off",
            "RATE_LIMIT_REDIS_PREFIX": ":custom:",
        }
    )

    assert policy.block_step_seconds == 600
    assert policy.block_max_seconds == 600
    assert policy.max_requests == 60
    assert policy.redis_enabled is False
    assert policy.redis_prefix == "custom"
    assert policy.block_seconds_for(3) == 600


def test_redis_count_is_mirrored_into_durable_row(app_context, clock, fake_redis):
    limiter = AdaptiveRateLimiter(RateLimitPolicy(), redis_client=fake_redis)

    results = _exhaust(limiter, 60)

    assert all(r.allowed for r in results)
    assert results[-1].remaining == 0
    assert fake_redis.get(f"botguard:v1:count:{IP}") == "60"
    assert _row().request_count == 60


def test_redis_violation_escalates_durable_row(app_context, clock, fake_redis):
    limiter = AdaptiveRateLimiter(RateLimitPolicy(), redis_client=fake_redis)
    _exhaust(limiter, 60)

    first = limiter.check_rate_limit(IP, "/pricing")
    second = limiter.check_rate_limit(IP, "/pricing")

    assert (first.allowed, first.retry_after) == (False, 300)
    assert (second.allowed, second.retry_after) == (False, 600)
    row = _row()
    assert row.request_count == 62
    assert row.consecutive_violations == 2
    assert row.is_blocked is True

    clock.advance(seconds=60)
    fresh = limiter.check_rate_limit(IP, "/pricing")

    assert fresh.allowed is True
    assert fresh.remaining == 59
    row = _row()
    assert row.consecutive_violations == 0
    assert row.is_blocked is False
    assert row.total_violations == 2


def test_redis_remaining_window_drives_reset(app_context, clock, fake_redis):
    limiter = AdaptiveRateLimiter(RateLimitPolicy(), redis_client=fake_redis)
    start = clock.now
    limiter.check_rate_limit(IP, "/")
    clock.advance(seconds=20)

    result = limiter.check_rate_limit(IP, "/")

    assert result.remaining == 58
    assert result.reset == start + timedelta(seconds=60)


class _BrokenRedis:
    def incr(self, key):
        raise RedisConnectionError("connection refused")


def test_redis_failure_falls_back_to_database(app_context, clock, caplog):
    limiter = AdaptiveRateLimiter(RateLimitPolicy(), redis_client=_BrokenRedis())

    with caplog.at_level(logging.WARNING):
        result = limiter.check_rate_limit(IP, "/pricing")

    assert result.allowed is True
    assert result.remaining == 59
    assert _row().request_count == 1
    assert "falling back to database counter" in caplog.text


def test_redis_disabled_by_policy_ignores_client(app_context, clock, fake_redis):
    limiter = AdaptiveRateLimiter(RateLimitPolicy(redis_enabled=False), redis_client=fake_redis)

    limiter.check_rate_limit(IP, "/")
    limiter.check_rate_limit(IP, "/")

    assert fake_redis.get(f"botguard:v1:count:{IP}") is None
    assert _row().request_count == 2


def test_blank_identifier_is_rejected(app_context, limiter):
    with pytest.raises(ValueError):
        limiter.check_rate_limit("   ", "/")


class _SwitchableRedis:
    """Wraps FakeRedis; every call raises while ``down`` is set."""

    def __init__(self, inner):
        self.inner = inner
        self.down = False

    def __getattr__(self, name):
        target = getattr(self.inner, name)

        def call(*args, **kwargs):
            if self.down:
                raise RedisConnectionError("connection refused")
            return target(*args, **kwargs)

        return call


def test_redis_outage_mid_window_keeps_quota_spent(app_context, clock, fake_redis):
    redis_client = _SwitchableRedis(fake_redis)
    limiter = AdaptiveRateLimiter(RateLimitPolicy(), redis_client=redis_client)
    assert all(r.allowed for r in _exhaust(limiter, 60))

    redis_client.down = True
    after_outage = _exhaust(limiter, 60)

    assert [r for r in after_outage if r.allowed] == []
    assert after_outage[0].retry_after == 300
    row = _row()
    assert row.request_count == 120
    assert row.consecutive_violations == 60


def test_redis_recovery_adopts_database_count(app_context, clock, fake_redis):
    redis_client = _SwitchableRedis(fake_redis)
    limiter = AdaptiveRateLimiter(RateLimitPolicy(), redis_client=redis_client)
    _exhaust(limiter, 30)

    redis_client.down = True
    assert all(r.allowed for r in _exhaust(limiter, 20))
    assert _row().request_count == 50

    redis_client.down = False
    recovered = limiter.check_rate_limit(IP, "/pricing")

    assert recovered.allowed is True
    assert recovered.remaining == 9
    assert fake_redis.get(f"botguard:v1:count:{IP}") == "51"
    assert all(r.allowed for r in _exhaust(limiter, 9))
    denied = limiter.check_rate_limit(IP, "/pricing")
    assert (denied.allowed, denied.retry_after) == (False, 300)


def test_flushed_redis_key_keeps_escalation_history(app_context, clock, fake_redis):
    start = clock.now
    limiter = AdaptiveRateLimiter(RateLimitPolicy(), redis_client=fake_redis)
    _exhaust(limiter, 62)
    assert _row().consecutive_violations == 2

    clock.advance(seconds=10)
    fake_redis.flushall()
    result = limiter.check_rate_limit(IP, "/pricing")

    assert (result.allowed, result.retry_after) == (False, 900)
    row = _row()
    assert row.request_count == 63
    assert row.consecutive_violations == 3
    assert row.is_blocked is True
    assert fake_redis.get(f"botguard:v1:count:{IP}") == "63"
    assert fake_redis.ttl(f"botguard:v1:count:{IP}") == 50
    assert AdaptiveRateLimiter._as_utc(row.window_start) == start


def test_concurrent_requests_admit_exactly_the_quota(app, clock):
    limiter = AdaptiveRateLimiter(RateLimitPolicy(redis_enabled=False))
    outcomes = []
    errors = []

    def worker():
        with app.app_context():
            for _ in range(10):
                try:
                    outcomes.append(limiter.check_rate_limit(IP, "/pricing").allowed)
                except Exception as exc:  # surfaced through the assertion below
                    errors.append(exc)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert outcomes.count(True) == 60
    assert outcomes.count(False) == 20
    with app.app_context():
        row = _row()
        assert row.request_count == 80
        assert row.consecutive_violations == 20
        assert row.total_violations == 20
