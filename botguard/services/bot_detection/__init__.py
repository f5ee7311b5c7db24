"""Bot detection services: heuristic classifier, adaptive limiter, reporting."""

from .classifier import BotScore, HeuristicClassifier
from .policy import DetectionPolicy, RateLimitPolicy
from .rate_limiter import AdaptiveRateLimiter, RateLimitResult
from .reporting import SecurityReportService
from .service import (
    BotDetectionService,
    DetectionRequest,
    DetectionRequestError,
    DetectionVerdict,
)

__all__ = [
    "AdaptiveRateLimiter",
    "BotDetectionService",
    "BotScore",
    "DetectionPolicy",
    "DetectionRequest",
    "DetectionRequestError",
    "DetectionVerdict",
    "HeuristicClassifier",
    "RateLimitPolicy",
    "RateLimitResult",
    "SecurityReportService",
]
