"""Per-identifier fixed-window rate limiter with escalating blocks.

Synopsis:
Counts requests per client identifier inside a fixed window. Exceeding the
quota records a violation and blocks the identifier for
``consecutive_violations x step`` seconds, capped at the configured maximum.
A clean window resets the consecutive violation counter.

Counting is atomic. The database path increments with a single conditional
UPDATE ... RETURNING and only falls back to a conditional reset or an INSERT
when no active window exists. When Redis is configured the counter lives in
an INCR key whose TTL is the window, and every counted request is mirrored
into the durable row. The row keeps the higher of the two counts, so either
path can take over mid-window without granting a fresh quota or dropping the
escalation state.

Glossary:
- Window: Fixed interval starting at ``window_start`` during which requests count.
- Violation: One request over quota inside an active window.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from redis.exceptions import RedisError
from sqlalchemy import case, or_, update
from sqlalchemy.exc import IntegrityError

from ...extensions import db
from ...models.bot_detection import AdvancedRateLimit
from .policy import RateLimitPolicy

logger = logging.getLogger(__name__)

_MAX_IDENTIFIER_LENGTH = 255
_MAX_ENDPOINT_LENGTH = 2048


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset: datetime
    retry_after: int | None = None

    def headers(self) -> dict[str, str]:
        headers = {
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": self.reset.isoformat(),
        }
        if self.retry_after:
            headers["Retry-After"] = str(self.retry_after)
        return headers


class AdaptiveRateLimiter:
    IDENTIFIER_TYPE = "ip"
    MAX_ATTEMPTS = 3
    _UPDATE_OPTIONS = {"synchronize_session": False}

    def __init__(self, policy: RateLimitPolicy | None = None, redis_client: Any = None):
        self.policy = policy or RateLimitPolicy()
        self.redis_client = redis_client if self.policy.redis_enabled else None

    @staticmethod
    def _utcnow() -> datetime:
        return datetime.now(timezone.utc)

    @staticmethod
    def _as_utc(value: datetime | None) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @staticmethod
    def _normalize_identifier(raw: Any) -> str:
        identifier = str(raw).strip() if raw is not None else ""
        if not identifier:
            raise ValueError("Rate limit identifier is required")
        return identifier[:_MAX_IDENTIFIER_LENGTH]

    @staticmethod
    def _normalize_endpoint(raw: Any) -> str | None:
        if not isinstance(raw, str) or not raw.strip():
            return None
        return raw.strip()[:_MAX_ENDPOINT_LENGTH]

    def _redis_key(self, *parts: Any) -> str:
        segments = [self.policy.redis_prefix]
        segments.extend(str(part) for part in parts if part not in (None, ""))
        return ":".join(segments)

    def _window(self) -> timedelta:
        return timedelta(seconds=self.policy.window_seconds)

    def _row_filter(self, identifier: str):
        return (
            AdvancedRateLimit.identifier == identifier,
            AdvancedRateLimit.identifier_type == self.IDENTIFIER_TYPE,
        )

    def _fresh_window_result(self, now: datetime) -> RateLimitResult:
        return RateLimitResult(
            allowed=True,
            remaining=self.policy.max_requests - 1,
            reset=now + self._window(),
        )

    # --- Public API ---

    def check_rate_limit(self, identifier: Any, endpoint: Any = None) -> RateLimitResult:
        """Count one request for ``identifier`` and return the quota verdict."""
        identifier = self._normalize_identifier(identifier)
        endpoint = self._normalize_endpoint(endpoint)

        if self.redis_client is not None:
            try:
                return self._check_with_redis(identifier, endpoint)
            except RedisError as exc:
                db.session.rollback()
                logger.warning(
                    "Rate limiter Redis unavailable; falling back to database counter: %s", exc
                )
        return self._check_with_database(identifier, endpoint)

    # --- Redis hot path ---

    def _check_with_redis(self, identifier: str, endpoint: str | None) -> RateLimitResult:
        policy = self.policy
        now = self._utcnow()
        key = self._redis_key("count", identifier)

        count = int(self.redis_client.incr(key))
        if count == 1:
            self.redis_client.expire(key, policy.window_seconds)
        ttl = self.redis_client.ttl(key)
        ttl = int(ttl) if ttl is not None else -1
        if ttl < 0:
            # Key lost its expiry (crash between INCR and EXPIRE); restart the window clock.
            self.redis_client.expire(key, policy.window_seconds)
            ttl = policy.window_seconds

        for attempt in range(1, self.MAX_ATTEMPTS + 1):
            row = self._increment_active_window(identifier, endpoint, now, observed=count)
            if row is not None:
                durable = int(row.request_count)
                if durable > count:
                    # The row counted requests this key never saw (database fallback or a
                    # flushed key); carry them over and end the key with the row's window.
                    count = int(self.redis_client.incrby(key, durable - count))
                    window_end = self._as_utc(row.window_start) + self._window()
                    ttl = max(1, math.ceil((window_end - now).total_seconds()))
                    self.redis_client.expire(key, ttl)
                break
            if self._reset_window(identifier, endpoint, now, request_count=count):
                break
            if self._insert_row(identifier, endpoint, now, request_count=count):
                break
            logger.debug(
                "Rate limit row for %s changed concurrently (attempt %s); retrying",
                identifier,
                attempt,
            )
        else:
            raise RuntimeError(f"Unable to persist rate limit window for {identifier!r}")

        if count > policy.max_requests:
            return self._record_violation(identifier, endpoint, now)

        db.session.commit()
        return RateLimitResult(
            allowed=True,
            remaining=policy.max_requests - count,
            reset=now + timedelta(seconds=ttl),
        )

    # --- Database path ---

    def _check_with_database(self, identifier: str, endpoint: str | None) -> RateLimitResult:
        policy = self.policy
        for attempt in range(1, self.MAX_ATTEMPTS + 1):
            now = self._utcnow()
            row = self._increment_active_window(identifier, endpoint, now)
            if row is not None:
                count = int(row.request_count)
                if count > policy.max_requests:
                    return self._record_violation(identifier, endpoint, now)
                db.session.commit()
                window_start = self._as_utc(row.window_start)
                return RateLimitResult(
                    allowed=True,
                    remaining=policy.max_requests - count,
                    reset=window_start + self._window(),
                )

            if self._reset_window(identifier, endpoint, now):
                db.session.commit()
                return self._fresh_window_result(now)

            if self._insert_row(identifier, endpoint, now):
                return self._fresh_window_result(now)

            logger.debug(
                "Rate limit row for %s changed concurrently (attempt %s); retrying",
                identifier,
                attempt,
            )
        raise RuntimeError(f"Unable to acquire rate limit state for {identifier!r}")

    def _increment_active_window(
        self,
        identifier: str,
        endpoint: str | None,
        now: datetime,
        *,
        observed: int | None = None,
    ):
        """Count one request in the live window, never below an ``observed`` Redis count."""
        cutoff = now - self._window()
        if observed is None:
            next_count = AdvancedRateLimit.request_count + 1
        else:
            next_count = case(
                (AdvancedRateLimit.request_count < observed, observed),
                else_=AdvancedRateLimit.request_count + 1,
            )
        stmt = (
            update(AdvancedRateLimit)
            .where(*self._row_filter(identifier), AdvancedRateLimit.window_start > cutoff)
            .values(
                request_count=next_count,
                last_endpoint=endpoint,
                updated_at=now,
            )
            .returning(AdvancedRateLimit.request_count, AdvancedRateLimit.window_start)
        )
        return db.session.execute(stmt, execution_options=self._UPDATE_OPTIONS).first()

    def _reset_window(
        self,
        identifier: str,
        endpoint: str | None,
        now: datetime,
        *,
        request_count: int = 1,
    ) -> bool:
        """Start a new window on a row whose previous window has ended."""
        cutoff = now - self._window()
        stmt = (
            update(AdvancedRateLimit)
            .where(
                *self._row_filter(identifier),
                or_(
                    AdvancedRateLimit.window_start <= cutoff,
                    AdvancedRateLimit.window_start.is_(None),
                ),
            )
            .values(
                request_count=request_count,
                window_start=now,
                is_blocked=False,
                block_expires_at=None,
                consecutive_violations=0,
                last_endpoint=endpoint,
                updated_at=now,
            )
            .returning(AdvancedRateLimit.id)
        )
        return db.session.execute(stmt, execution_options=self._UPDATE_OPTIONS).first() is not None

    def _insert_row(
        self,
        identifier: str,
        endpoint: str | None,
        now: datetime,
        *,
        request_count: int = 1,
    ) -> bool:
        db.session.add(
            AdvancedRateLimit(
                identifier=identifier,
                identifier_type=self.IDENTIFIER_TYPE,
                request_count=request_count,
                window_start=now,
                is_blocked=False,
                block_expires_at=None,
                consecutive_violations=0,
                total_violations=0,
                last_endpoint=endpoint,
                created_at=now,
                updated_at=now,
            )
        )
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            logger.debug("Concurrent rate limit insert for %s; retrying with existing row", identifier)
            return False
        return True

    def _record_violation(self, identifier: str, endpoint: str | None, now: datetime) -> RateLimitResult:
        stmt = (
            update(AdvancedRateLimit)
            .where(*self._row_filter(identifier))
            .values(
                consecutive_violations=AdvancedRateLimit.consecutive_violations + 1,
                total_violations=AdvancedRateLimit.total_violations + 1,
                is_blocked=True,
                last_endpoint=endpoint,
                updated_at=now,
            )
            .returning(AdvancedRateLimit.consecutive_violations)
        )
        row = db.session.execute(stmt, execution_options=self._UPDATE_OPTIONS).first()
        if row is None:
            raise RuntimeError(f"Unable to record rate limit violation for {identifier!r}")

        violations = int(row.consecutive_violations)
        block_seconds = self.policy.block_seconds_for(violations)
        expires_at = now + timedelta(seconds=block_seconds)
        db.session.execute(
            update(AdvancedRateLimit)
            .where(*self._row_filter(identifier))
            .values(block_expires_at=expires_at),
            execution_options=self._UPDATE_OPTIONS,
        )
        db.session.commit()

        logger.warning(
            "Rate limit exceeded for %s (violation %s); blocked for %ss until %s",
            identifier,
            violations,
            block_seconds,
            expires_at.isoformat(),
        )
        return RateLimitResult(
            allowed=False,
            remaining=0,
            reset=expires_at,
            retry_after=block_seconds,
        )
