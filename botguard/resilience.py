"""Global resilience and error-handler registration.

Synopsis:
Registers teardown and error handlers so every failure leaves the database
session clean and reaches the caller as a JSON ``{"error": message}`` body.

Glossary:
- Resilience handler: Global request teardown/error behavior for known failures.
"""

from __future__ import annotations

import logging

from flask import jsonify
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from .extensions import db

logger = logging.getLogger(__name__)


def register_resilience_handlers(app) -> None:
    """Install global DB rollback and JSON error handlers."""

    @app.teardown_request
    def _rollback_on_error(exc):
        try:
            if exc is not None:
                db.session.rollback()
        finally:
            db.session.remove()

    @app.errorhandler(HTTPException)
    def _http_error_handler(error: HTTPException):
        response = jsonify({"error": error.description or error.name})
        response.status_code = error.code or 500
        for header, value in error.get_headers():
            if header.lower() != "content-type":
                response.headers[header] = value
        return response

    @app.errorhandler(SQLAlchemyError)
    def _db_error_handler(error: SQLAlchemyError):
        db.session.rollback()
        logger.error("Database error while handling request: %s", error)
        return jsonify({"error": str(error)}), 500

    @app.errorhandler(Exception)
    def _unhandled_error_handler(error: Exception):
        logger.exception("Unhandled error while handling request")
        return jsonify({"error": str(error) or error.__class__.__name__}), 500
