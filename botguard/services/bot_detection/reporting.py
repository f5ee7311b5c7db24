"""Read-side reporting over the detection log and limiter state.

Synopsis:
Aggregates detection-log rows into the security summary (totals, block rate,
top blocked IPs) and exposes recent rows, per-IP block status, and a
retention purge used by the CLI.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import case, func

from ...extensions import db
from ...models.bot_detection import AdvancedRateLimit, BotDetectionLog

logger = logging.getLogger(__name__)

TIME_RANGES: dict[str, timedelta] = {
    "1h": timedelta(hours=1),
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
}
DEFAULT_RANGE = "24h"
TOP_BLOCKED_LIMIT = 10
MAX_DETECTIONS_LIMIT = 500
MAX_RATE_LIMITS_LIMIT = 200


class SecurityReportService:
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

    @classmethod
    def resolve_range(cls, range_key: str | None) -> str:
        key = (range_key or DEFAULT_RANGE).strip().lower()
        if key not in TIME_RANGES:
            raise ValueError(f"range must be one of {', '.join(TIME_RANGES)}")
        return key

    @staticmethod
    def _clamp_limit(raw: Any, default: int, maximum: int) -> int:
        try:
            value = int(raw)
        except (TypeError, ValueError):
            return default
        if value < 1:
            return default
        return min(value, maximum)

    @classmethod
    def summarize(cls, range_key: str | None = DEFAULT_RANGE) -> dict[str, Any]:
        key = cls.resolve_range(range_key)
        now = cls._utcnow()
        since = now - TIME_RANGES[key]

        totals = (
            db.session.query(
                func.count(BotDetectionLog.id),
                func.sum(case((BotDetectionLog.is_blocked.is_(True), 1), else_=0)),
                func.sum(
                    case(
                        (
                            (BotDetectionLog.is_bot.is_(True)) & (BotDetectionLog.is_blocked.is_(False)),
                            1,
                        ),
                        else_=0,
                    )
                ),
                func.sum(case((BotDetectionLog.is_bot.is_(False), 1), else_=0)),
            )
            .filter(BotDetectionLog.created_at >= since)
            .one()
        )
        total, blocked, suspicious, clean = (int(value or 0) for value in totals)
        block_rate = round(blocked / total * 100, 1) if total else 0.0

        blocked_count = func.count(BotDetectionLog.id).label("blocked_count")
        top_rows = (
            db.session.query(BotDetectionLog.ip_address, blocked_count)
            .filter(
                BotDetectionLog.created_at >= since,
                BotDetectionLog.is_blocked.is_(True),
            )
            .group_by(BotDetectionLog.ip_address)
            .order_by(blocked_count.desc(), BotDetectionLog.ip_address.asc())
            .limit(TOP_BLOCKED_LIMIT)
            .all()
        )

        rate_limited_now = (
            db.session.query(func.count(AdvancedRateLimit.id))
            .filter(
                AdvancedRateLimit.is_blocked.is_(True),
                AdvancedRateLimit.block_expires_at > now,
            )
            .scalar()
        )

        return {
            "range": key,
            "since": since.isoformat(),
            "totalRequests": total,
            "blockedRequests": blocked,
            "suspiciousRequests": suspicious,
            "cleanRequests": clean,
            "blockRate": block_rate,
            "topBlockedIps": [
                {"ip": ip, "count": int(count)} for ip, count in top_rows
            ],
            "activeRateLimitBlocks": int(rate_limited_now or 0),
        }

    @classmethod
    def recent_detections(cls, range_key: str | None = DEFAULT_RANGE, limit: Any = 100) -> list[dict[str, Any]]:
        key = cls.resolve_range(range_key)
        since = cls._utcnow() - TIME_RANGES[key]
        rows = (
            BotDetectionLog.query.filter(BotDetectionLog.created_at >= since)
            .order_by(BotDetectionLog.created_at.desc(), BotDetectionLog.id.desc())
            .limit(cls._clamp_limit(limit, 100, MAX_DETECTIONS_LIMIT))
            .all()
        )
        return [row.to_dict() for row in rows]

    @classmethod
    def recent_rate_limits(cls, limit: Any = 50) -> list[dict[str, Any]]:
        rows = (
            AdvancedRateLimit.query.order_by(
                AdvancedRateLimit.updated_at.desc(), AdvancedRateLimit.id.desc()
            )
            .limit(cls._clamp_limit(limit, 50, MAX_RATE_LIMITS_LIMIT))
            .all()
        )
        return [row.to_dict() for row in rows]

    @classmethod
    def block_status(cls, ip: str) -> dict[str, Any]:
        now = cls._utcnow()
        active = (
            BotDetectionLog.query.filter(
                BotDetectionLog.ip_address == ip,
                BotDetectionLog.is_blocked.is_(True),
                BotDetectionLog.block_expires_at > now,
            )
            .order_by(BotDetectionLog.created_at.desc(), BotDetectionLog.id.desc())
            .first()
        )
        limiter_row = AdvancedRateLimit.query.filter_by(identifier=ip, identifier_type="ip").first()
        limiter_blocked = bool(
            limiter_row is not None
            and limiter_row.is_blocked
            and limiter_row.block_expires_at is not None
            and cls._as_utc(limiter_row.block_expires_at) > now
        )
        return {
            "ip": ip,
            "detectionBlock": active.to_dict() if active is not None else None,
            "rateLimit": limiter_row.to_dict() if limiter_row is not None else None,
            "blocked": active is not None or limiter_blocked,
        }

    @classmethod
    def purge_detection_logs(cls, older_than_days: int) -> int:
        if older_than_days < 1:
            raise ValueError("older_than_days must be >= 1")
        cutoff = cls._utcnow() - timedelta(days=older_than_days)
        deleted = BotDetectionLog.query.filter(
            BotDetectionLog.created_at < cutoff
        ).delete(synchronize_session=False)
        db.session.commit()
        logger.info("Purged %s detection log rows older than %s", deleted, cutoff.isoformat())
        return int(deleted or 0)
