import json
from datetime import timedelta

from botguard.extensions import db
from botguard.models import BotDetectionLog

from .test_security_reporting import _log, _seed_mixed_traffic


def test_detection_summary_command(app, runner, clock):
    with app.app_context():
        _seed_mixed_traffic(clock.now)

    result = runner.invoke(args=["detection-summary", "--range", "24h"])

    assert result.exit_code == 0, result.output
    assert "Bot detection summary (last 24h)" in result.output
    assert "Total requests: 7" in result.output
    assert "Blocked: 3 (42.9% block rate)" in result.output
    assert "198.51.100.1: 2" in result.output


def test_detection_summary_rejects_unknown_range(runner):
    result = runner.invoke(args=["detection-summary", "--range", "30d"])

    assert result.exit_code != 0


def test_block_status_command_prints_json(app, runner, clock):
    with app.app_context():
        _seed_mixed_traffic(clock.now)

    result = runner.invoke(args=["block-status", "198.51.100.2"])

    assert result.exit_code == 0, result.output
    status = json.loads(result.output)
    assert status["ip"] == "198.51.100.2"
    assert status["blocked"] is True


def test_purge_detection_logs_command(app, runner, clock):
    with app.app_context():
        _log(clock.now, "203.0.113.1", age=timedelta(days=10))
        _log(clock.now, "203.0.113.1", age=timedelta(hours=1))
        db.session.commit()

    result = runner.invoke(args=["purge-detection-logs", "--days", "7", "--yes"])

    assert result.exit_code == 0, result.output
    assert "Deleted 1 detection log rows older than 7 days." in result.output
    with app.app_context():
        assert BotDetectionLog.query.count() == 1


def test_purge_detection_logs_aborts_without_confirmation(app, runner, clock):
    with app.app_context():
        _log(clock.now, "203.0.113.1", age=timedelta(days=60))
        db.session.commit()

    result = runner.invoke(args=["purge-detection-logs"], input="n\n")

    assert result.exit_code != 0
    with app.app_context():
        assert BotDetectionLog.query.count() == 1


def test_config_check_lists_sections_and_masks_secrets(runner, monkeypatch):
    monkeypatch.setenv("BOT_DETECTION_ADMIN_API_KEY", "super-secret-value")

    result = runner.invoke(args=["config-check", "--env", "testing"])

    assert result.exit_code == 0, result.output
    assert "Configuration checklist (testing)" in result.output
    assert "== Core Runtime ==" in result.output
    assert "BOT_DETECTION_ADMIN_API_KEY = '********'" in result.output
    assert "super-secret-value" not in result.output


def test_config_check_strict_fails_on_missing_production_keys(runner, monkeypatch):
    for key in ("DATABASE_URL", "FLASK_SECRET_KEY", "REDIS_URL", "ENABLE_PROXY_FIX"):
        monkeypatch.delenv(key, raising=False)

    result = runner.invoke(args=["config-check", "--env", "production", "--strict"])

    assert result.exit_code == 1
    assert "DATABASE_URL is required but missing." in result.output
    assert "FLASK_SECRET_KEY is required but missing." in result.output
