"""Explainable rule-based scoring of request metadata.

Synopsis:
Scores a request description for automation signals. Every rule adds a fixed
weight and appends a human-readable reason, so a verdict can always be
explained from the reasons list alone.

Glossary:
- Bot score: Sum of the weights of every rule that fired.
- Reason: Ordered explanation string, one per fired rule.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Mapping

from .policy import DetectionPolicy

logger = logging.getLogger(__name__)

AUTOMATION_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        "bot",
        "crawler",
        "spider",
        "scraper",
        "curl",
        "wget",
        "python",
        "java",
        "phantom",
        "selenium",
        "headless",
    )
)
EXPECTED_HEADERS: tuple[str, ...] = ("accept", "accept-language", "accept-encoding")
LANGUAGE_HEADER = "accept-language"


@dataclass(frozen=True)
class BotScore:
    score: int
    reasons: list[str] = field(default_factory=list)
    is_bot: bool = False
    should_block: bool = False


def _regex_literal(pattern: re.Pattern[str]) -> str:
    """Render a pattern as a ``/source/flags`` literal."""
    flags = "i" if pattern.flags & re.IGNORECASE else ""
    return f"/{pattern.pattern}/{flags}"


def _normalize_headers(headers: Any) -> dict[str, Any]:
    if not isinstance(headers, Mapping):
        return {}
    normalized: dict[str, Any] = {}
    for name, value in headers.items():
        if not isinstance(name, str):
            continue
        key = name.strip().lower()
        # First non-empty value wins when a name repeats with different casing.
        if key not in normalized or not _has_value(normalized[key]):
            normalized[key] = value
    return normalized


def _has_value(value: Any) -> bool:
    if value is None:
        return False
    return str(value) != ""


def _coerce_count(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if value != value:  # NaN
        return None
    return int(value)


class HeuristicClassifier:
    """Additive heuristic classifier; pure and deterministic."""

    def __init__(self, policy: DetectionPolicy | None = None):
        self.policy = policy or DetectionPolicy()

    def classify(
        self,
        user_agent: Any,
        headers: Any,
        recent_request_count: Any = None,
    ) -> BotScore:
        policy = self.policy
        agent = user_agent if isinstance(user_agent, str) else ""
        header_map = _normalize_headers(headers)
        count = _coerce_count(recent_request_count)

        score = 0
        reasons: list[str] = []

        for pattern in AUTOMATION_PATTERNS:
            if pattern.search(agent):
                score += policy.user_agent_weight
                reasons.append(f"Suspicious user agent: {_regex_literal(pattern)}")
                break

        missing = [name for name in EXPECTED_HEADERS if not _has_value(header_map.get(name))]
        if missing:
            score += len(missing) * policy.missing_header_weight
            reasons.append(f"Missing headers: {', '.join(missing)}")

        if len(agent) < policy.short_user_agent_length:
            score += policy.short_user_agent_weight
            reasons.append("Empty or too short user agent")

        if count is not None and count > policy.high_rate_threshold:
            score += policy.high_rate_weight
            reasons.append(f"High request rate: {count} requests")

        if not _has_value(header_map.get(LANGUAGE_HEADER)):
            score += policy.missing_language_weight
            reasons.append("Missing Accept-Language header")

        result = BotScore(
            score=score,
            reasons=reasons,
            is_bot=score >= policy.bot_threshold,
            should_block=score >= policy.block_threshold,
        )
        logger.debug("Classified request: score=%s reasons=%s", result.score, result.reasons)
        return result
