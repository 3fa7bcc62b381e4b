from __future__ import annotations

from typing import Any

from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import create_access_token, jwt_required

from ..common.audit import audit
from ..common.errors import APIError
from ..common.params import json_payload, normalize_email, normalize_language, optional_text, validate_password
from ..common.rate_limit import login_rate_limiter
from ..common.rbac import current_user
from ..extensions import db
from ..models import User, money
from ..payments.entitlements import total_donated


auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


def _issue_token(user: User) -> str:
    return create_access_token(identity=str(user.id), additional_claims={"email": user.email})


def _find_user_by_email(email: str) -> User | None:
    return User.query.filter(User.email == email).one_or_none()


def _profile_payload(user: User) -> dict[str, Any]:
    payload = user.to_dict()
    payload["totalDonated"] = money(total_donated(user.id))
    return payload


def _profile_user() -> User:
    user = current_user(required=False)
    if user is None:
        raise APIError(404, "USER_NOT_FOUND", "User not found.")
    return user


@auth_bp.post("/register")
def register():
    payload = json_payload()
    if not payload.get("email") or not payload.get("password"):
        raise APIError(400, "INVALID_CREDENTIALS", "Email and password are required.")

    email = normalize_email(payload.get("email"))
    password = validate_password(payload.get("password"))

    if _find_user_by_email(email) is not None:
        raise APIError(409, "USER_EXISTS", "User with this email already exists.")

    user = User(
        email=email,
        first_name=optional_text(payload.get("firstName")),
        last_name=optional_text(payload.get("lastName")),
        language=normalize_language(payload.get("language")),
        is_admin=False,
    )
    user.set_password(password)

    db.session.add(user)
    db.session.flush()
    audit(
        action="auth.register",
        actor=user,
        target_type="user",
        target_id=str(user.id),
        details={"email": email},
    )
    db.session.commit()

    return jsonify(user.public_dict()), 201


@auth_bp.post("/login")
def login():
    payload = json_payload()
    raw_email = payload.get("email")
    password = payload.get("password") or ""

    if not raw_email or not password:
        raise APIError(400, "INVALID_CREDENTIALS", "Email and password are required.")

    email = str(raw_email).strip().lower()
    remote_ip = (request.headers.get("X-Forwarded-For") or request.remote_addr or "unknown").split(",")[0].strip()
    rate_limit_key = f"{remote_ip}:{email}"

    if login_rate_limiter.is_blocked(
        rate_limit_key,
        current_app.config["LOGIN_RATE_LIMIT_WINDOW_SECONDS"],
        current_app.config["LOGIN_RATE_LIMIT_MAX_ATTEMPTS"],
    ):
        current_app.logger.warning("login rate limited for %s from %s", email, remote_ip)
        raise APIError(429, "RATE_LIMITED", "Too many login attempts. Please try again later.")

    user = _find_user_by_email(email)
    if user is None or not user.verify_password(str(password)):
        login_rate_limiter.add_failure(rate_limit_key)
        audit(
            action="auth.login_failed",
            actor=user,
            target_type="user",
            target_id=str(user.id) if user is not None else None,
            details={"email": email, "ip": remote_ip},
        )
        db.session.commit()
        raise APIError(401, "INVALID_CREDENTIALS", "Invalid email or password.")

    login_rate_limiter.clear(rate_limit_key)
    audit(
        action="auth.login",
        actor=user,
        target_type="user",
        target_id=str(user.id),
        details={"ip": remote_ip},
    )
    db.session.commit()

    return jsonify({"token": _issue_token(user), "user": user.to_dict()})


@auth_bp.route("/profile", methods=["GET", "POST"])
@jwt_required()
def get_profile():
    user = _profile_user()
    return jsonify(_profile_payload(user))


@auth_bp.put("/profile")
@jwt_required()
def update_profile():
    user = _profile_user()
    payload = json_payload()

    new_password = payload.get("newPassword")
    if new_password:
        current_password = payload.get("currentPassword")
        if not current_password:
            raise APIError(400, "INVALID_PASSWORD", "Current password is required to change password.")
        if not user.verify_password(str(current_password)):
            raise APIError(400, "INVALID_PASSWORD", "Current password is incorrect.")
        user.set_password(validate_password(new_password, "New password"))

    # Profile fields are replaced as a whole; omitted fields are cleared.
    user.first_name = optional_text(payload.get("firstName"))
    user.last_name = optional_text(payload.get("lastName"))
    user.language = normalize_language(payload.get("language"))

    audit(
        action="auth.profile_update",
        actor=user,
        target_type="user",
        target_id=str(user.id),
        details={"password_changed": bool(new_password)},
    )
    db.session.commit()

    return jsonify(_profile_payload(user))
