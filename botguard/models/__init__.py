"""Models package - imports all models so Alembic and create_all see them."""
from ..extensions import db
from .bot_detection import AdvancedRateLimit, BehavioralData, BotDetectionLog

__all__ = [
    "db",
    "AdvancedRateLimit",
    "BehavioralData",
    "BotDetectionLog",
]
