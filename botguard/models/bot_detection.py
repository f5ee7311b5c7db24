"""Database models backing bot detection and adaptive rate limiting.

Synopsis:
Stores one append-only row per evaluated request (score, reasons, block state)
and one mutable fixed-window counter row per client identifier.

Glossary:
- Detection log: Audit row written for every scored request.
- Rate limit state: Per-identifier counter, window start, and escalation state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping

from ..extensions import db


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _isoformat(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


@dataclass(frozen=True)
class BehavioralData:
    """Closed shape of the behavioral snapshot stored with each detection."""

    headers: list[str] = field(default_factory=list)
    fingerprint: str | None = None
    requests_in_window: int | None = None

    def to_json(self) -> dict[str, Any]:
        return {
            "headers": list(self.headers),
            "fingerprint": self.fingerprint,
            "requestsInWindow": self.requests_in_window,
        }

    @classmethod
    def from_json(cls, payload: Mapping[str, Any] | None) -> "BehavioralData":
        if not isinstance(payload, Mapping):
            return cls()
        headers = payload.get("headers") or []
        count = payload.get("requestsInWindow")
        return cls(
            headers=[str(name) for name in headers] if isinstance(headers, list) else [],
            fingerprint=payload.get("fingerprint"),
            requests_in_window=count if isinstance(count, int) and not isinstance(count, bool) else None,
        )


class BotDetectionLog(db.Model):
    """Append-only audit row for one classifier evaluation."""

    __tablename__ = "bot_detection_logs"

    id = db.Column(db.Integer, primary_key=True)
    ip_address = db.Column(db.String(64), nullable=False, index=True)
    user_agent = db.Column(db.Text, nullable=True)
    path = db.Column(db.String(2048), nullable=True)
    bot_score = db.Column(db.Integer, nullable=False, default=0)
    detection_reasons = db.Column(db.JSON, nullable=False, default=list)
    is_bot = db.Column(db.Boolean, nullable=False, default=False)
    is_blocked = db.Column(db.Boolean, nullable=False, default=False)
    behavioral_data = db.Column(db.JSON, nullable=True)
    block_expires_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, index=True)

    __table_args__ = (
        db.Index(
            "ix_bot_detection_logs_ip_blocked_expires",
            "ip_address",
            "is_blocked",
            "block_expires_at",
        ),
    )

    @property
    def behavior(self) -> BehavioralData:
        return BehavioralData.from_json(self.behavioral_data)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "ipAddress": self.ip_address,
            "userAgent": self.user_agent,
            "path": self.path,
            "botScore": self.bot_score,
            "detectionReasons": list(self.detection_reasons or []),
            "isBot": bool(self.is_bot),
            "isBlocked": bool(self.is_blocked),
            "behavioralData": self.behavior.to_json(),
            "blockExpiresAt": _isoformat(self.block_expires_at),
            "createdAt": _isoformat(self.created_at),
        }

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return f"<BotDetectionLog ip={self.ip_address!r} score={self.bot_score} blocked={self.is_blocked}>"


class AdvancedRateLimit(db.Model):
    """Per-identifier fixed-window counter with escalating block state."""

    __tablename__ = "advanced_rate_limits"

    id = db.Column(db.Integer, primary_key=True)
    identifier = db.Column(db.String(255), nullable=False, index=True)
    identifier_type = db.Column(db.String(32), nullable=False, default="ip")
    request_count = db.Column(db.Integer, nullable=False, default=0)
    window_start = db.Column(db.DateTime(timezone=True), nullable=True)
    is_blocked = db.Column(db.Boolean, nullable=False, default=False)
    block_expires_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    consecutive_violations = db.Column(db.Integer, nullable=False, default=0)
    total_violations = db.Column(db.Integer, nullable=False, default=0)
    last_endpoint = db.Column(db.String(2048), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow, index=True)

    __table_args__ = (
        db.UniqueConstraint(
            "identifier", "identifier_type", name="uq_advanced_rate_limits_identifier_type"
        ),
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "identifier": self.identifier,
            "identifierType": self.identifier_type,
            "requestCount": self.request_count,
            "windowStart": _isoformat(self.window_start),
            "isBlocked": bool(self.is_blocked),
            "blockExpiresAt": _isoformat(self.block_expires_at),
            "consecutiveViolations": self.consecutive_violations,
            "totalViolations": self.total_violations,
            "lastEndpoint": self.last_endpoint,
            "updatedAt": _isoformat(self.updated_at),
        }

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return f"<AdvancedRateLimit {self.identifier_type}:{self.identifier} count={self.request_count}>"
