import logging
import os

from flask import request
from werkzeug.middleware.proxy_fix import ProxyFix

DEFAULT_SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
}

logger = logging.getLogger(__name__)


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _safe_env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        logger.warning("Invalid value for %s=%r; defaulting to %s", name, raw, default)
        return default


def register_middleware(app):
    """Register proxy handling, preflight short-circuit, and response headers."""

    trust_proxy_headers = (
        app.config.get("ENABLE_PROXY_FIX")
        or _env_flag("ENABLE_PROXY_FIX")
        or _env_flag("TRUST_PROXY_HEADERS")
    )
    if trust_proxy_headers and not getattr(app.wsgi_app, "_botguard_proxyfix", False):
        proxy_fix_kwargs = {
            "x_for": _safe_env_int("PROXY_FIX_X_FOR", 1),
            "x_proto": _safe_env_int("PROXY_FIX_X_PROTO", 1),
            "x_host": _safe_env_int("PROXY_FIX_X_HOST", 1),
            "x_port": _safe_env_int("PROXY_FIX_X_PORT", 1),
            "x_prefix": _safe_env_int("PROXY_FIX_X_PREFIX", 0),
        }
        wrapped = ProxyFix(app.wsgi_app, **proxy_fix_kwargs)
        setattr(wrapped, "_botguard_proxyfix", True)
        app.wsgi_app = wrapped
        logger.info("ProxyFix enabled: %s", proxy_fix_kwargs)

    secure_env = not app.debug and not app.testing
    force_security_headers = _env_flag("FORCE_SECURITY_HEADERS")

    @app.before_request
    def answer_preflight():
        """Answer OPTIONS on any path with an empty body; Flask-CORS adds the headers."""
        if request.method == "OPTIONS":
            return app.response_class(status=200)
        return None

    @app.after_request
    def add_security_headers(response):
        if secure_env or force_security_headers:
            for header, value in DEFAULT_SECURITY_HEADERS.items():
                response.headers.setdefault(header, value)
        return response
