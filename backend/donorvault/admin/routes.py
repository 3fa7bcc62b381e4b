from __future__ import annotations

from typing import Any

from flask import Blueprint, jsonify
from sqlalchemy import func, type_coerce

from ..common.audit import audit
from ..common.errors import APIError
from ..common.params import (
    json_payload,
    normalize_email,
    normalize_language,
    optional_text,
    parse_int,
    parse_page,
    validate_password,
)
from ..common.rbac import admin_required, current_user
from ..extensions import db
from ..models import Donation, DonationStatus, Folder, FolderAccess, User, isoformat, money
from ..payments.entitlements import grant_folder_access, revoke_folder_access


admin_bp = Blueprint("admin", __name__, url_prefix="/admin")


def _donation_stats_query():
    return (
        db.session.query(
            User,
            func.coalesce(func.sum(Donation.amount), 0).label("total_donated"),
            func.count(Donation.id).label("donation_count"),
            type_coerce(func.max(Donation.created_at), db.DateTime(timezone=True)).label("last_donation"),
        )
        .outerjoin(
            Donation,
            (Donation.user_id == User.id) & (Donation.status == DonationStatus.COMPLETED.value),
        )
        .group_by(User.id)
    )


def _user_row(user: User, total: Any, count: int, last_donation: Any) -> dict[str, Any]:
    payload = user.to_dict()
    payload.update(
        {
            "totalDonated": money(total),
            "donationCount": int(count or 0),
            "createdAt": isoformat(user.created_at),
            "lastDonation": isoformat(last_donation),
        }
    )
    return payload


def _get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise APIError(404, "USER_NOT_FOUND", "User not found.")
    return user


def _get_folder(folder_id: int) -> Folder:
    folder = db.session.get(Folder, folder_id)
    if folder is None:
        raise APIError(404, "FOLDER_NOT_FOUND", "Folder not found.")
    return folder


def _assert_email_available(email: str, exclude_id: int | None = None) -> None:
    query = User.query.filter(User.email == email)
    if exclude_id is not None:
        query = query.filter(User.id != exclude_id)
    if query.first() is not None:
        raise APIError(409, "USER_EXISTS", "User with this email already exists.")


@admin_bp.post("/users")
@admin_required
def list_users():
    payload = json_payload()
    page, limit = parse_page(payload, default_limit=20)

    rows = (
        _donation_stats_query()
        .order_by(User.created_at.desc(), User.id.desc())
        .limit(limit)
        .offset((page - 1) * limit)
        .all()
    )
    total = db.session.query(func.count(User.id)).scalar() or 0

    return jsonify(
        {
            "users": [_user_row(*row) for row in rows],
            "total": total,
            "page": page,
            "limit": limit,
        }
    )


@admin_bp.post("/users/details")
@admin_required
def user_details():
    payload = json_payload()
    user_id = parse_int(payload.get("userId"), "userId")

    row = _donation_stats_query().filter(User.id == user_id).one_or_none()
    if row is None:
        raise APIError(404, "USER_NOT_FOUND", "User not found.")
    user = row[0]

    donations = (
        Donation.query.filter(Donation.user_id == user_id)
        .order_by(Donation.created_at.desc(), Donation.id.desc())
        .all()
    )
    grants = (
        db.session.query(Folder, FolderAccess.granted_at)
        .join(FolderAccess, FolderAccess.folder_id == Folder.id)
        .filter(FolderAccess.user_id == user_id)
        .order_by(Folder.id.asc())
        .all()
    )

    return jsonify(
        {
            "user": _user_row(*row),
            "donations": [donation.to_dict() for donation in donations],
            "folderAccess": [
                {"id": folder.id, "name": folder.name, "grantedAt": isoformat(granted_at)}
                for folder, granted_at in grants
            ],
        }
    )


@admin_bp.post("/users/create")
@admin_required
def create_user():
    actor = current_user(required=True)
    assert actor is not None

    payload = json_payload()
    email = normalize_email(payload.get("email"))
    password = validate_password(payload.get("password"))
    _assert_email_available(email)

    user = User(
        email=email,
        first_name=optional_text(payload.get("firstName")),
        last_name=optional_text(payload.get("lastName")),
        language=normalize_language(payload.get("language")),
        is_admin=bool(payload.get("isAdmin", False)),
    )
    user.set_password(password)

    db.session.add(user)
    db.session.flush()
    audit(
        action="admin.user_create",
        actor=actor,
        target_type="user",
        target_id=str(user.id),
        details={"email": email, "is_admin": user.is_admin},
    )
    db.session.commit()

    return jsonify({"user": user.to_dict()}), 201


@admin_bp.put("/users/update")
@admin_required
def update_user():
    actor = current_user(required=True)
    assert actor is not None

    payload = json_payload()
    user = _get_user(parse_int(payload.get("userId"), "userId"))

    if "email" in payload and payload.get("email") is not None:
        email = normalize_email(payload.get("email"))
        _assert_email_available(email, exclude_id=user.id)
        user.email = email

    if payload.get("password"):
        user.set_password(validate_password(payload.get("password")))

    if "firstName" in payload:
        user.first_name = optional_text(payload.get("firstName"))
    if "lastName" in payload:
        user.last_name = optional_text(payload.get("lastName"))
    if "language" in payload:
        user.language = normalize_language(payload.get("language"))

    if "isAdmin" in payload:
        is_admin = bool(payload.get("isAdmin"))
        if user.id == actor.id and not is_admin:
            raise APIError(400, "INVALID_OPERATION", "You cannot remove your own admin access.")
        user.is_admin = is_admin

    audit(
        action="admin.user_update",
        actor=actor,
        target_type="user",
        target_id=str(user.id),
        details={"email": user.email, "password_changed": bool(payload.get("password"))},
    )
    db.session.commit()

    return jsonify({"user": user.to_dict()})


@admin_bp.delete("/users/delete")
@admin_required
def delete_user():
    actor = current_user(required=True)
    assert actor is not None

    payload = json_payload()
    user = _get_user(parse_int(payload.get("userId"), "userId"))
    if user.is_admin:
        raise APIError(403, "FORBIDDEN", "Admin users cannot be deleted.")

    user_id = user.id
    db.session.delete(user)
    audit(
        action="admin.user_delete",
        actor=actor,
        target_type="user",
        target_id=str(user_id),
        details={"email": user.email},
    )
    db.session.commit()

    return jsonify({"success": True})


@admin_bp.post("/users/grant-access")
@admin_required
def grant_access():
    actor = current_user(required=True)
    assert actor is not None

    payload = json_payload()
    user = _get_user(parse_int(payload.get("userId"), "userId"))
    folder = _get_folder(parse_int(payload.get("folderId"), "folderId"))

    created = grant_folder_access(user.id, folder.id)
    if created:
        audit(
            action="admin.access_grant",
            actor=actor,
            target_type="user",
            target_id=str(user.id),
            details={"folder_id": folder.id},
        )
    db.session.commit()

    return jsonify({"success": True})


@admin_bp.delete("/users/revoke-access")
@admin_required
def revoke_access():
    actor = current_user(required=True)
    assert actor is not None

    payload = json_payload()
    user_id = parse_int(payload.get("userId"), "userId")
    folder_id = parse_int(payload.get("folderId"), "folderId")

    if revoke_folder_access(user_id, folder_id):
        audit(
            action="admin.access_revoke",
            actor=actor,
            target_type="user",
            target_id=str(user_id),
            details={"folder_id": folder_id},
        )
    db.session.commit()

    return jsonify({"success": True})
