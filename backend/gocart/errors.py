from typing import Optional

from flask import Flask, jsonify
from pymongo.errors import DuplicateKeyError
from werkzeug.exceptions import HTTPException


class CollaboratorError(Exception):
    """Raised by the CDN and scheduler clients when the remote side refuses a call."""


def error_response(status_code: int, error: str, message: Optional[str] = None):
    body = {"error": error}
    if message:
        body["message"] = message
    return jsonify(body), status_code


def register_error_handlers(app: Flask, jwt_manager) -> None:
    @jwt_manager.unauthorized_loader
    def missing_token(reason: str):
        return error_response(401, "Unauthorized", reason)

    @jwt_manager.invalid_token_loader
    def invalid_token(reason: str):
        return error_response(401, "Unauthorized", reason)

    @jwt_manager.expired_token_loader
    def expired_token(jwt_header, jwt_payload):
        return error_response(401, "Unauthorized", "Token has expired")

    @app.errorhandler(DuplicateKeyError)
    def duplicate_key(exc):
        app.logger.warning("Duplicate key rejected: %s", exc)
        return error_response(409, "Conflict", "A record with this value already exists")

    @app.errorhandler(HTTPException)
    def http_error(exc):
        return error_response(exc.code or 500, exc.name, exc.description)

    @app.errorhandler(Exception)
    def unexpected_error(exc):
        if isinstance(exc, HTTPException):
            return http_error(exc)
        app.logger.exception("Unhandled error: %s", exc)
        return error_response(
            500, "Internal Server Error", "An unexpected error occurred"
        )
