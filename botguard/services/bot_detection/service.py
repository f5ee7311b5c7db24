"""Bot detection orchestration.

Synopsis:
Turns one submitted request description into an allow/block verdict:
short-circuit on an unexpired detection-log block, score the metadata, append
the detection log, then count the request against the adaptive rate limiter.

Glossary:
- Verdict: HTTP status, JSON body, and headers returned to the caller.
- Active block: Most recent detection-log row for an IP with ``is_blocked`` and
  a ``block_expires_at`` still in the future.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional

from flask import Flask
from sqlalchemy.exc import SQLAlchemyError

from ...extensions import db
from ...models.bot_detection import BehavioralData, BotDetectionLog
from ...utils.redis_pool import get_redis_client
from .classifier import BotScore, HeuristicClassifier
from .policy import DetectionPolicy, RateLimitPolicy
from .rate_limiter import AdaptiveRateLimiter, RateLimitResult

logger = logging.getLogger(__name__)

PLACEHOLDER_IPS = frozenset({"client"})
_MAX_USER_AGENT_LENGTH = 1024
_MAX_PATH_LENGTH = 2048
_MAX_FINGERPRINT_LENGTH = 512


class DetectionRequestError(ValueError):
    """Raised when a submitted request description is malformed."""


def _optional_string(payload: Mapping[str, Any], key: str) -> Optional[str]:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise DetectionRequestError(f"{key} must be a string")
    return value


def _normalize_ip(raw_ip: Optional[str]) -> Optional[str]:
    if not raw_ip or not isinstance(raw_ip, str):
        return None
    ip = raw_ip.split(",")[0].strip()
    return ip or None


@dataclass(frozen=True)
class DetectionRequest:
    user_agent: str
    ip: str
    path: Optional[str]
    headers: dict[str, str] = field(default_factory=dict)
    fingerprint: Optional[str] = None
    requests_in_window: Optional[int] = None

    @classmethod
    def from_payload(cls, payload: Any, fallback_ip: Optional[str] = None) -> "DetectionRequest":
        if not isinstance(payload, Mapping):
            raise DetectionRequestError("Request body must be a JSON object")

        user_agent = _optional_string(payload, "userAgent") or ""
        path = _optional_string(payload, "path")
        fingerprint = _optional_string(payload, "fingerprint")

        raw_headers = payload.get("headers")
        if not isinstance(raw_headers, Mapping):
            raise DetectionRequestError("headers must be an object")
        headers: dict[str, str] = {}
        for name, value in raw_headers.items():
            if isinstance(value, (dict, list)):
                raise DetectionRequestError(f"header {name!r} must be a string")
            headers[str(name)] = "" if value is None else str(value)

        requests_in_window = payload.get("requestsInWindow")
        if requests_in_window is not None:
            if isinstance(requests_in_window, bool) or not isinstance(requests_in_window, int):
                raise DetectionRequestError("requestsInWindow must be an integer")
            if requests_in_window < 0:
                raise DetectionRequestError("requestsInWindow must be non-negative")

        raw_ip = payload.get("ip")
        if raw_ip is not None and not isinstance(raw_ip, str):
            raise DetectionRequestError("ip must be a string")
        ip = _normalize_ip(raw_ip)
        if ip is None or ip.lower() in PLACEHOLDER_IPS:
            ip = _normalize_ip(fallback_ip)
        if not ip:
            raise DetectionRequestError("Unable to determine client IP address")

        return cls(
            user_agent=user_agent[:_MAX_USER_AGENT_LENGTH],
            ip=ip,
            path=path[:_MAX_PATH_LENGTH] if path else path,
            headers=headers,
            fingerprint=fingerprint[:_MAX_FINGERPRINT_LENGTH] if fingerprint else fingerprint,
            requests_in_window=requests_in_window,
        )

    def behavioral_data(self) -> BehavioralData:
        return BehavioralData(
            headers=list(self.headers.keys()),
            fingerprint=self.fingerprint,
            requests_in_window=self.requests_in_window,
        )


@dataclass(frozen=True)
class DetectionVerdict:
    status_code: int
    body: dict[str, Any]
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def blocked(self) -> bool:
        return bool(self.body.get("blocked"))


class BotDetectionService:
    BLOCKED_REASON = "IP temporarily blocked due to suspicious activity"
    RATE_LIMIT_REASON = "Rate limit exceeded"

    def __init__(
        self,
        detection_policy: DetectionPolicy | None = None,
        rate_limit_policy: RateLimitPolicy | None = None,
        *,
        redis_client: Any = None,
        classifier: HeuristicClassifier | None = None,
        rate_limiter: AdaptiveRateLimiter | None = None,
    ):
        self.detection_policy = detection_policy or DetectionPolicy()
        self.rate_limit_policy = rate_limit_policy or RateLimitPolicy()
        self.classifier = classifier or HeuristicClassifier(self.detection_policy)
        self.rate_limiter = rate_limiter or AdaptiveRateLimiter(
            self.rate_limit_policy, redis_client=redis_client
        )

    @classmethod
    def from_app(cls, app: Flask) -> "BotDetectionService":
        detection_policy = DetectionPolicy.from_config(app.config)
        rate_limit_policy = RateLimitPolicy.from_config(app.config)
        redis_client = get_redis_client(app) if rate_limit_policy.redis_enabled else None
        return cls(detection_policy, rate_limit_policy, redis_client=redis_client)

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
    def resolve_request_ip(cls, request) -> Optional[str]:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return _normalize_ip(forwarded)
        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return _normalize_ip(real_ip)
        return _normalize_ip(getattr(request, "remote_addr", None))

    # --- Evaluation ---

    def evaluate(self, detection: DetectionRequest) -> DetectionVerdict:
        now = self._utcnow()
        logger.info("Bot detection request: ip=%s path=%s", detection.ip, detection.path)

        active_block = self.find_active_block(detection.ip, now=now)
        if active_block is not None:
            expires_at = self._as_utc(active_block.block_expires_at)
            logger.warning("IP is blocked: %s (until %s)", detection.ip, expires_at.isoformat())
            return DetectionVerdict(
                status_code=403,
                body={
                    "blocked": True,
                    "reason": self.BLOCKED_REASON,
                    "expiresAt": expires_at.isoformat(),
                },
            )

        score = self.classifier.classify(
            detection.user_agent,
            detection.headers,
            detection.requests_in_window,
        )
        self._record_detection(detection, score, now)

        limit = self.rate_limiter.check_rate_limit(detection.ip, detection.path)
        if not limit.allowed:
            logger.warning("Rate limit exceeded: %s", detection.ip)
            return DetectionVerdict(
                status_code=429,
                body={
                    "blocked": True,
                    "reason": self.RATE_LIMIT_REASON,
                    "retryAfter": limit.retry_after,
                },
                headers=limit.headers(),
            )

        if score.should_block:
            logger.warning(
                "Blocking %s: score=%s reasons=%s", detection.ip, score.score, score.reasons
            )
        return DetectionVerdict(
            status_code=403 if score.should_block else 200,
            body=self._scored_body(score, limit),
            headers=limit.headers(),
        )

    @staticmethod
    def _scored_body(score: BotScore, limit: RateLimitResult) -> dict[str, Any]:
        return {
            "blocked": score.should_block,
            "isBot": score.is_bot,
            "score": score.score,
            "reasons": list(score.reasons),
            "rateLimit": {
                "remaining": limit.remaining,
                "reset": limit.reset.isoformat(),
            },
        }

    # --- Detection log ---

    def find_active_block(self, ip: str, *, now: datetime | None = None) -> BotDetectionLog | None:
        """Return the newest unexpired block for ``ip``; lookup failures fail open."""
        now = now or self._utcnow()
        try:
            return (
                BotDetectionLog.query.filter(
                    BotDetectionLog.ip_address == ip,
                    BotDetectionLog.is_blocked.is_(True),
                    BotDetectionLog.block_expires_at > now,
                )
                .order_by(BotDetectionLog.created_at.desc(), BotDetectionLog.id.desc())
                .first()
            )
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.warning("Active block lookup failed for %s (fail-open): %s", ip, exc)
            return None

    def _record_detection(self, detection: DetectionRequest, score: BotScore, now: datetime) -> None:
        block_expires_at = (
            now + timedelta(seconds=self.detection_policy.block_seconds)
            if score.should_block
            else None
        )
        entry = BotDetectionLog(
            ip_address=detection.ip,
            user_agent=detection.user_agent,
            path=detection.path,
            bot_score=score.score,
            detection_reasons=list(score.reasons),
            is_bot=score.is_bot,
            is_blocked=score.should_block,
            behavioral_data=detection.behavioral_data().to_json(),
            block_expires_at=block_expires_at,
            created_at=now,
        )
        try:
            db.session.add(entry)
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.error("Error logging bot detection for %s: %s", detection.ip, exc)
