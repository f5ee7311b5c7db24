"""Tunable policy objects for the classifier and the adaptive rate limiter.

Synopsis:
Builds immutable policy dataclasses from Flask config. Values that fail to
coerce, or fall below the floor declared in the config schema, fall back to the
documented default.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from ...config_schema import setting


@dataclass(frozen=True)
class DetectionPolicy:
    user_agent_weight: int = 30
    missing_header_weight: int = 15
    short_user_agent_weight: int = 25
    short_user_agent_length: int = 10
    high_rate_weight: int = 30
    high_rate_threshold: int = 50
    missing_language_weight: int = 20
    bot_threshold: int = 50
    block_threshold: int = 70
    block_seconds: int = 3600

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "DetectionPolicy":
        return cls(
            user_agent_weight=setting(config, "BOT_DETECTION_UA_WEIGHT"),
            missing_header_weight=setting(config, "BOT_DETECTION_MISSING_HEADER_WEIGHT"),
            short_user_agent_weight=setting(config, "BOT_DETECTION_SHORT_UA_WEIGHT"),
            short_user_agent_length=setting(config, "BOT_DETECTION_SHORT_UA_LENGTH"),
            high_rate_weight=setting(config, "BOT_DETECTION_HIGH_RATE_WEIGHT"),
            high_rate_threshold=setting(config, "BOT_DETECTION_HIGH_RATE_THRESHOLD"),
            missing_language_weight=setting(config, "BOT_DETECTION_MISSING_LANGUAGE_WEIGHT"),
            bot_threshold=setting(config, "BOT_DETECTION_BOT_THRESHOLD"),
            block_threshold=setting(config, "BOT_DETECTION_BLOCK_THRESHOLD"),
            block_seconds=setting(config, "BOT_DETECTION_BLOCK_SECONDS"),
        )


@dataclass(frozen=True)
class RateLimitPolicy:
    window_seconds: int = 60
    max_requests: int = 60
    block_step_seconds: int = 300
    block_max_seconds: int = 3600
    redis_enabled: bool = True
    redis_prefix: str = "botguard:v1"

    def block_seconds_for(self, consecutive_violations: int) -> int:
        """Linear escalation: violations x step, capped at the maximum."""
        violations = max(int(consecutive_violations or 0), 1)
        return min(violations * self.block_step_seconds, self.block_max_seconds)

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "RateLimitPolicy":
        step = setting(config, "RATE_LIMIT_BLOCK_STEP_SECONDS")
        prefix = setting(config, "RATE_LIMIT_REDIS_PREFIX").strip(":")
        return cls(
            window_seconds=setting(config, "RATE_LIMIT_WINDOW_SECONDS"),
            max_requests=setting(config, "RATE_LIMIT_MAX_REQUESTS"),
            block_step_seconds=step,
            block_max_seconds=max(setting(config, "RATE_LIMIT_BLOCK_MAX_SECONDS"), step),
            redis_enabled=setting(config, "RATE_LIMIT_REDIS_ENABLED"),
            redis_prefix=prefix or cls.redis_prefix,
        )
