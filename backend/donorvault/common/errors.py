from __future__ import annotations

from typing import Any

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException


ERROR_KINDS: dict[int, str] = {
    400: "INVALID_ARGUMENT",
    401: "UNAUTHENTICATED",
    403: "PERMISSION_DENIED",
    404: "NOT_FOUND",
    409: "ALREADY_EXISTS",
    412: "FAILED_PRECONDITION",
    429: "RATE_LIMITED",
    500: "INTERNAL",
}


def error_kind(status_code: int) -> str:
    if status_code in ERROR_KINDS:
        return ERROR_KINDS[status_code]
    if status_code >= 500:
        return "INTERNAL"
    return "INVALID_ARGUMENT"


class APIError(Exception):
    def __init__(self, status_code: int, code: str, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details or {}

    @property
    def kind(self) -> str:
        return error_kind(self.status_code)


def error_payload(code: str, message: str, details: dict[str, Any] | None = None, status_code: int = 400) -> dict[str, Any]:
    return {
        "error": {
            "kind": error_kind(status_code),
            "code": code,
            "message": message,
            "details": details or {},
        }
    }


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(APIError)
    def handle_api_error(error: APIError):  # type: ignore[no-untyped-def]
        return jsonify(error_payload(error.code, error.message, error.details, error.status_code)), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException):  # type: ignore[no-untyped-def]
        status_code = error.code or 500
        return (
            jsonify(error_payload("HTTP_ERROR", error.description, {"status": error.code}, status_code)),
            status_code,
        )

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):  # type: ignore[no-untyped-def]
        app.logger.exception("Unhandled exception", exc_info=error)
        return jsonify(error_payload("INTERNAL_ERROR", "An unexpected error occurred.", status_code=500)), 500
