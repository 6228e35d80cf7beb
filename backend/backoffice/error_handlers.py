"""Centralized error handlers."""

from __future__ import annotations

import logging

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from .errors import AppError, UnexpectedError

logger = logging.getLogger(__name__)


def _fail(code: str, message: str, status: int):
    return jsonify({"success": False, "error": {"code": code, "message": message}}), status


def register_error_handlers(app: Flask) -> None:
    """Register error handlers for the Flask app."""

    @app.errorhandler(AppError)
    def _handle_app_error(exc: AppError):
        if isinstance(exc, UnexpectedError):
            logger.error("Unexpected error: %s", exc.code)
        return _fail(exc.code, exc.message, exc.status_code)

    @app.errorhandler(HTTPException)
    def _handle_http_exception(exc: HTTPException):
        status = int(getattr(exc, "code", 500) or 500)
        if status == 404:
            return _fail("NOT_FOUND", "Not found", 404)
        return _fail("HTTP_ERROR", getattr(exc, "description", "HTTP error"), status)

    @app.errorhandler(Exception)
    def _handle_unexpected(exc: Exception):
        logger.exception("Unhandled exception")
        return _fail("INTERNAL_ERROR", "Internal server error", 500)
