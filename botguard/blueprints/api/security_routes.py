"""Authenticated read-only security reporting endpoints."""

import hmac
import logging
from functools import wraps

from flask import Blueprint, current_app, jsonify, request

from ...extensions import cache, limiter
from ...services.bot_detection import SecurityReportService

logger = logging.getLogger(__name__)

security_api_bp = Blueprint("security_api", __name__, url_prefix="/security")

REPORTING_RATE_LIMIT = "30 per minute"


def _summary_cache_key(range_key: str) -> str:
    return f"botguard:security-summary:{range_key}"


def require_admin_key(view):
    """Require ``Authorization: Bearer <BOT_DETECTION_ADMIN_API_KEY>``."""

    @wraps(view)
    def wrapper(*args, **kwargs):
        expected = current_app.config.get("BOT_DETECTION_ADMIN_API_KEY")
        if not expected:
            return jsonify({"error": "Security reporting is disabled"}), 403

        scheme, _, token = (request.headers.get("Authorization") or "").partition(" ")
        if scheme.lower() != "bearer" or not hmac.compare_digest(token.strip(), str(expected)):
            logger.warning(
                "Rejected security reporting request from %s to %s",
                request.remote_addr,
                request.path,
            )
            return jsonify({"error": "Unauthorized"}), 401
        return view(*args, **kwargs)

    return wrapper


@security_api_bp.route("/summary", methods=["GET"])
@limiter.limit(REPORTING_RATE_LIMIT)
@require_admin_key
def security_summary():
    try:
        range_key = SecurityReportService.resolve_range(request.args.get("range"))
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400

    cache_key = _summary_cache_key(range_key)
    cached_payload = cache.get(cache_key)
    if cached_payload:
        return jsonify(cached_payload)

    payload = SecurityReportService.summarize(range_key)
    cache.set(
        cache_key,
        payload,
        timeout=current_app.config.get("SECURITY_SUMMARY_CACHE_TTL", 30),
    )
    return jsonify(payload)


@security_api_bp.route("/detections", methods=["GET"])
@limiter.limit(REPORTING_RATE_LIMIT)
@require_admin_key
def recent_detections():
    try:
        rows = SecurityReportService.recent_detections(
            request.args.get("range"),
            limit=request.args.get("limit", 100),
        )
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400
    return jsonify({"detections": rows, "count": len(rows)})


@security_api_bp.route("/rate-limits", methods=["GET"])
@limiter.limit(REPORTING_RATE_LIMIT)
@require_admin_key
def recent_rate_limits():
    rows = SecurityReportService.recent_rate_limits(limit=request.args.get("limit", 50))
    return jsonify({"rateLimits": rows, "count": len(rows)})


@security_api_bp.route("/ip/<path:ip>", methods=["GET"])
@limiter.limit(REPORTING_RATE_LIMIT)
@require_admin_key
def ip_block_status(ip):
    return jsonify(SecurityReportService.block_status(ip.strip()))
