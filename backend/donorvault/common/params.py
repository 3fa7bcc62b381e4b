from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation
from typing import Any

from flask import current_app, request

from .errors import APIError


EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def json_payload() -> dict[str, Any]:
    payload = request.get_json(silent=True) or {}
    if not isinstance(payload, dict):
        raise APIError(400, "INVALID_PAYLOAD", "JSON object expected.")
    return payload


def parse_int(value: Any, field_name: str) -> int:
    if isinstance(value, bool):
        raise APIError(400, "INVALID_PARAMETER", f"{field_name} must be an integer.")
    try:
        return int(value)
    except (TypeError, ValueError) as error:
        raise APIError(400, "INVALID_PARAMETER", f"{field_name} must be an integer.") from error


def parse_optional_int(value: Any, field_name: str) -> int | None:
    if value in (None, "", "null"):
        return None
    return parse_int(value, field_name)


def parse_page(payload: dict[str, Any], default_limit: int, max_limit: int = 200) -> tuple[int, int]:
    page = parse_optional_int(payload.get("page"), "page") or 1
    limit = parse_optional_int(payload.get("limit"), "limit") or default_limit
    if page < 1:
        raise APIError(400, "INVALID_PARAMETER", "page must be >= 1.")
    if limit < 1:
        raise APIError(400, "INVALID_PARAMETER", "limit must be >= 1.")
    return page, min(limit, max_limit)


def parse_amount(value: Any, field_name: str) -> Decimal:
    if value is None or isinstance(value, bool):
        raise APIError(400, "INVALID_PARAMETER", f"{field_name} must be a number.")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError) as error:
        raise APIError(400, "INVALID_PARAMETER", f"{field_name} must be a number.") from error
    if not amount.is_finite():
        raise APIError(400, "INVALID_PARAMETER", f"{field_name} must be a number.")
    return amount


def optional_text(value: Any) -> str | None:
    if value is None:
        return None
    cleaned = str(value).strip()
    return cleaned or None


def normalize_email(value: Any) -> str:
    email = (str(value) if value is not None else "").strip().lower()
    if not email:
        raise APIError(400, "INVALID_EMAIL", "Email is required.")
    if len(email) > 255 or not EMAIL_PATTERN.match(email):
        raise APIError(400, "INVALID_EMAIL", "Email address is not valid.")
    return email


def validate_password(password: Any, field_name: str = "Password") -> str:
    if not isinstance(password, str) or not password:
        raise APIError(400, "INVALID_PASSWORD", f"{field_name} is required.")
    min_length = int(current_app.config["PASSWORD_MIN_LENGTH"])
    if len(password) < min_length:
        raise APIError(400, "INVALID_PASSWORD", f"{field_name} must be at least {min_length} characters.")
    return password


def normalize_language(value: Any) -> str:
    language = optional_text(value)
    if language is None:
        return current_app.config["DEFAULT_LANGUAGE"]
    if len(language) > 8:
        raise APIError(400, "INVALID_LANGUAGE", "Language code is too long.")
    return language.lower()
