from __future__ import annotations

from flask import jsonify
from werkzeug.exceptions import HTTPException


class CareError(Exception):
    status_code = 400
    code = "error"

    def __init__(self, message: str = "", details: dict | None = None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.details = details

    def to_dict(self) -> dict:
        body = {"error": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(CareError):
    status_code = 422
    code = "validation_error"


class Forbidden(CareError):
    status_code = 403
    code = "forbidden"


class NotFound(CareError):
    status_code = 404
    code = "not_found"


class InvalidTransition(CareError):
    status_code = 409
    code = "invalid_transition"


class AlreadyClaimed(CareError):
    status_code = 409
    code = "already_claimed"


def register_error_handlers(app) -> None:
    @app.errorhandler(CareError)
    def _care_error(exc: CareError):
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(HTTPException)
    def _http_error(exc: HTTPException):
        code = (exc.name or "error").lower().replace(" ", "_")
        return jsonify({"error": code, "message": exc.description}), exc.code
