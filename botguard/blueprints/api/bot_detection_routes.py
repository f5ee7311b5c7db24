import logging

from flask import Blueprint, current_app, jsonify, make_response, request

from ...extensions import limiter
from ...services.bot_detection import (
    BotDetectionService,
    DetectionRequest,
    DetectionRequestError,
)

logger = logging.getLogger(__name__)

bot_detection_api_bp = Blueprint("bot_detection_api", __name__)


@bot_detection_api_bp.route("/bot-detection", methods=["POST"])
@limiter.exempt
def bot_detection():
    """Score one request description and apply the per-IP adaptive limit.

    The endpoint runs its own limiter, so the app-wide Flask-Limiter quota
    does not apply here.
    """
    payload = request.get_json(silent=True)
    if payload is None:
        return jsonify({"error": "Request body must be valid JSON"}), 400

    try:
        detection = DetectionRequest.from_payload(
            payload,
            fallback_ip=BotDetectionService.resolve_request_ip(request),
        )
    except DetectionRequestError as exc:
        logger.info("Rejected bot detection payload: %s", exc)
        return jsonify({"error": str(exc)}), 400

    verdict = BotDetectionService.from_app(current_app._get_current_object()).evaluate(detection)

    resp = make_response(jsonify(verdict.body), verdict.status_code)
    for name, value in verdict.headers.items():
        resp.headers[name] = value
    resp.headers["Cache-Control"] = "no-store"
    return resp
