from datetime import timedelta

import pytest

from botguard.extensions import db
from botguard.models import AdvancedRateLimit, BotDetectionLog

from .conftest import BROWSER_UA, detection_payload

ENDPOINT = "/api/bot-detection"


def _post(client, payload, **kwargs):
    return client.post(ENDPOINT, json=payload, **kwargs)


def test_clean_request_is_allowed_with_rate_limit_headers(client, clock):
    response = _post(client, detection_payload())

    assert response.status_code == 200
    body = response.get_json()
    assert body == {
        "blocked": False,
        "isBot": False,
        "score": 0,
        "reasons": [],
        "rateLimit": {
            "remaining": 59,
            "reset": (clock.now + timedelta(seconds=60)).isoformat(),
        },
    }
    assert response.headers["Access-Control-Allow-Origin"] == "*"
    assert response.headers["X-RateLimit-Remaining"] == "59"
    assert response.headers["X-RateLimit-Reset"] == body["rateLimit"]["reset"]
    assert "Retry-After" not in response.headers


def test_detection_is_logged_with_behavioral_snapshot(app, client, clock):
    _post(client, detection_payload(fingerprint="fp-123", requestsInWindow=3))

    with app.app_context():
        entry = BotDetectionLog.query.one()
        assert entry.ip_address == "203.0.113.10"
        assert entry.path == "/pricing"
        assert entry.bot_score == 0
        assert entry.detection_reasons == []
        assert entry.is_blocked is False
        assert entry.block_expires_at is None
        assert entry.behavioral_data == {
            "headers": ["accept", "accept-language", "accept-encoding"],
            "fingerprint": "fp-123",
            "requestsInWindow": 3,
        }


def test_scripted_client_is_blocked_and_logged_for_an_hour(app, client, clock):
    response = _post(client, detection_payload(userAgent="python-requests/2.28", headers={}))

    assert response.status_code == 403
    body = response.get_json()
    assert body["blocked"] is True
    assert body["isBot"] is True
    assert body["score"] == 95
    assert body["rateLimit"]["remaining"] == 59

    with app.app_context():
        entry = BotDetectionLog.query.one()
        assert entry.is_blocked is True
        assert BotDetectionLog.query.count() == 1
        expires = entry.block_expires_at.replace(tzinfo=None)
        assert expires == (clock.now + timedelta(hours=1)).replace(tzinfo=None)


def test_blocked_ip_short_circuits_scoring_logging_and_limiter(app, client, clock):
    _post(client, detection_payload(userAgent="curl/8.4.0", headers={}))
    clock.advance(minutes=5)

    response = _post(client, detection_payload())

    assert response.status_code == 403
    assert response.get_json() == {
        "blocked": True,
        "reason": "IP temporarily blocked due to suspicious activity",
        "expiresAt": (clock.now - timedelta(minutes=5) + timedelta(hours=1)).isoformat(),
    }
    with app.app_context():
        assert BotDetectionLog.query.count() == 1
        assert AdvancedRateLimit.query.one().request_count == 1


def test_expired_block_no_longer_short_circuits(client, clock):
    _post(client, detection_payload(userAgent="curl/8.4.0", headers={}))
    clock.advance(hours=1, seconds=1)

    response = _post(client, detection_payload())

    assert response.status_code == 200
    assert response.get_json()["score"] == 0


def test_rate_limit_violation_returns_429_with_retry_after(client, clock):
    for _ in range(60):
        assert _post(client, detection_payload()).status_code == 200

    response = _post(client, detection_payload())

    assert response.status_code == 429
    assert response.get_json() == {
        "blocked": True,
        "reason": "Rate limit exceeded",
        "retryAfter": 300,
    }
    assert response.headers["Retry-After"] == "300"
    assert response.headers["X-RateLimit-Remaining"] == "0"

    second = _post(client, detection_payload())
    assert second.get_json()["retryAfter"] == 600


def test_placeholder_ip_is_resolved_from_forwarded_header(app, client, clock):
    response = _post(
        client,
        detection_payload(ip="client"),
        headers={"X-Forwarded-For": "198.51.100.7, 10.0.0.1"},
    )

    assert response.status_code == 200
    with app.app_context():
        assert BotDetectionLog.query.one().ip_address == "198.51.100.7"
        assert AdvancedRateLimit.query.one().identifier == "198.51.100.7"


def test_missing_ip_falls_back_to_socket_address(app, client, clock):
    payload = detection_payload()
    payload.pop("ip")

    response = _post(client, payload, environ_base={"REMOTE_ADDR": "192.0.2.44"})

    assert response.status_code == 200
    with app.app_context():
        assert BotDetectionLog.query.one().ip_address == "192.0.2.44"


@pytest.mark.parametrize(
    "payload, message",
    [
        (["not", "an", "object"], "Request body must be a JSON object"),
        (detection_payload(headers="accept"), "headers must be an object"),
        (detection_payload(userAgent=42), "userAgent must be a string"),
        (detection_payload(requestsInWindow="many"), "requestsInWindow must be an integer"),
        (detection_payload(requestsInWindow=True), "requestsInWindow must be an integer"),
        (detection_payload(requestsInWindow=-1), "requestsInWindow must be non-negative"),
        (detection_payload(ip=12), "ip must be a string"),
    ],
)
def test_malformed_payloads_are_rejected_with_400(app, client, payload, message):
    response = _post(client, payload)

    assert response.status_code == 400
    assert response.get_json() == {"error": message}
    assert response.headers["Access-Control-Allow-Origin"] == "*"
    with app.app_context():
        assert BotDetectionLog.query.count() == 0


def test_invalid_json_body_is_rejected_with_400(client):
    response = client.post(ENDPOINT, data="{not json", content_type="application/json")

    assert response.status_code == 400
    assert response.get_json() == {"error": "Request body must be valid JSON"}


def test_detection_log_failure_does_not_change_verdict(app, client, clock):
    baseline = _post(client, detection_payload(ip="192.0.2.1", userAgent="", requestsInWindow=75))

    with app.app_context():
        BotDetectionLog.__table__.drop(db.engine)

    degraded = _post(client, detection_payload(ip="192.0.2.2", userAgent="", requestsInWindow=75))

    assert degraded.status_code == baseline.status_code == 200
    assert degraded.get_json() == baseline.get_json()
    assert degraded.get_json()["score"] == 55


def test_limiter_persistence_failure_returns_500(app, client, clock):
    with app.app_context():
        AdvancedRateLimit.__table__.drop(db.engine)

    response = _post(client, detection_payload())

    assert response.status_code == 500
    assert "error" in response.get_json()
    assert response.headers["Access-Control-Allow-Origin"] == "*"


def test_options_preflight_returns_empty_body_with_cors_headers(client):
    response = client.options(
        ENDPOINT,
        headers={
            "Origin": "https://app.example.com",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "content-type, apikey",
        },
    )

    assert response.status_code == 200
    assert response.get_data() == b""
    assert response.headers["Access-Control-Allow-Origin"] == "*"
    allowed = response.headers["Access-Control-Allow-Headers"].lower()
    assert "content-type" in allowed
    assert "apikey" in allowed


def test_options_on_unknown_path_is_answered(client):
    response = client.options("/anything/at/all")

    assert response.status_code == 200
    assert response.get_data() == b""
    assert response.headers["Access-Control-Allow-Origin"] == "*"


def test_wrong_method_and_unknown_path_return_json_errors(client):
    not_allowed = client.get(ENDPOINT)
    missing = client.get("/api/not-a-real-endpoint")

    assert not_allowed.status_code == 405
    assert "error" in not_allowed.get_json()
    assert missing.status_code == 404
    assert "error" in missing.get_json()


def test_health_endpoint(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.get_json() == {"status": "ok"}


def test_browser_headers_with_mixed_case_names_score_clean(client, clock):
    response = _post(
        client,
        detection_payload(
            userAgent=BROWSER_UA,
            headers={"Accept": "*/*", "Accept-Language": "fr", "Accept-Encoding": "br"},
        ),
    )

    assert response.status_code == 200
    assert response.get_json()["score"] == 0
