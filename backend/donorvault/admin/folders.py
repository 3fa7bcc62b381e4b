from __future__ import annotations

from decimal import Decimal
from typing import Any

from flask import current_app, jsonify
from sqlalchemy import func

from ..common.audit import audit
from ..common.errors import APIError
from ..common.params import json_payload, optional_text, parse_amount, parse_int
from ..common.rbac import admin_required, current_user
from ..common.storage import StorageError, get_storage
from ..extensions import db
from ..models import Folder, FolderAccess, StoredFile, User, isoformat
from .routes import _get_folder, admin_bp


def _counts_subquery(column: Any, name: str):
    return db.session.query(column.label("folder_id"), func.count().label("count")).group_by(column).subquery(name)


def _folders_with_counts():
    file_counts = _counts_subquery(StoredFile.folder_id, "file_counts")
    user_counts = _counts_subquery(FolderAccess.folder_id, "user_counts")
    return (
        db.session.query(
            Folder,
            func.coalesce(file_counts.c.count, 0),
            func.coalesce(user_counts.c.count, 0),
        )
        .outerjoin(file_counts, file_counts.c.folder_id == Folder.id)
        .outerjoin(user_counts, user_counts.c.folder_id == Folder.id)
    )


def _folder_payload(folder: Folder, file_count: int = 0, user_count: int = 0) -> dict[str, Any]:
    payload = folder.to_dict()
    payload["fileCount"] = int(file_count or 0)
    payload["userCount"] = int(user_count or 0)
    return payload


def _folder_with_counts(folder_id: int) -> dict[str, Any]:
    row = _folders_with_counts().filter(Folder.id == folder_id).one()
    return _folder_payload(*row)


def _parse_threshold(value: Any) -> Decimal:
    amount = parse_amount(value, "minDonationAmount")
    if amount < 0:
        raise APIError(400, "INVALID_AMOUNT", "Minimum donation amount cannot be negative.")
    return amount


def _assert_name_available(name: str, exclude_id: int | None = None) -> None:
    query = Folder.query.filter(Folder.name == name)
    if exclude_id is not None:
        query = query.filter(Folder.id != exclude_id)
    if query.first() is not None:
        raise APIError(409, "FOLDER_EXISTS", "Folder with this name already exists.")


@admin_bp.post("/folders")
@admin_required
def list_folders():
    rows = _folders_with_counts().order_by(Folder.id.asc()).all()
    return jsonify({"folders": [_folder_payload(*row) for row in rows]})


@admin_bp.post("/folders/create")
@admin_required
def create_folder():
    actor = current_user(required=True)
    assert actor is not None

    payload = json_payload()
    name = optional_text(payload.get("name"))
    if not name:
        raise APIError(400, "INVALID_NAME", "Folder name is required.")
    if len(name) > 255:
        raise APIError(400, "INVALID_NAME", "Folder name must be <= 255 characters.")

    min_donation = _parse_threshold(payload.get("minDonationAmount", 0))
    _assert_name_available(name)

    folder = Folder(
        name=name,
        description=optional_text(payload.get("description")),
        min_donation_amount=min_donation,
    )
    db.session.add(folder)
    db.session.flush()
    audit(
        action="admin.folder_create",
        actor=actor,
        target_type="folder",
        target_id=str(folder.id),
        details={"name": name, "min_donation_amount": str(min_donation)},
    )
    db.session.commit()

    return jsonify(_folder_payload(folder)), 201


@admin_bp.put("/folders/update")
@admin_required
def update_folder():
    actor = current_user(required=True)
    assert actor is not None

    payload = json_payload()
    folder = _get_folder(parse_int(payload.get("folderId"), "folderId"))

    name = optional_text(payload.get("name"))
    if name is not None:
        if len(name) > 255:
            raise APIError(400, "INVALID_NAME", "Folder name must be <= 255 characters.")
        _assert_name_available(name, exclude_id=folder.id)
        folder.name = name

    if payload.get("description") is not None:
        folder.description = optional_text(payload.get("description"))

    if payload.get("minDonationAmount") is not None:
        folder.min_donation_amount = _parse_threshold(payload.get("minDonationAmount"))

    audit(
        action="admin.folder_update",
        actor=actor,
        target_type="folder",
        target_id=str(folder.id),
        details={"name": folder.name},
    )
    db.session.commit()

    return jsonify(_folder_with_counts(folder.id))


@admin_bp.delete("/folders/delete")
@admin_required
def delete_folder():
    actor = current_user(required=True)
    assert actor is not None

    payload = json_payload()
    folder_id = parse_int(payload.get("folderId"), "folderId")

    default_ids = {int(current_app.config["GENERAL_FOLDER_ID"]), int(current_app.config["PREMIUM_FOLDER_ID"])}
    if folder_id <= 2 or folder_id in default_ids:
        raise APIError(403, "FORBIDDEN", "Cannot delete default folders.")
    folder = _get_folder(folder_id)

    storage_paths = [item.storage_path for item in folder.files]
    db.session.delete(folder)
    audit(
        action="admin.folder_delete",
        actor=actor,
        target_type="folder",
        target_id=str(folder_id),
        details={"name": folder.name, "deleted_files": len(storage_paths)},
    )
    db.session.commit()

    storage = get_storage()
    for path in storage_paths:
        try:
            storage.remove(path)
        except StorageError:
            current_app.logger.warning("orphaned storage object %s after deleting folder %s", path, folder_id, exc_info=True)

    return jsonify({"success": True})


@admin_bp.post("/folders/users")
@admin_required
def folder_users():
    payload = json_payload()
    folder = _get_folder(parse_int(payload.get("folderId"), "folderId"))

    rows = (
        db.session.query(User, FolderAccess.granted_at)
        .join(FolderAccess, FolderAccess.user_id == User.id)
        .filter(FolderAccess.folder_id == folder.id)
        .order_by(FolderAccess.granted_at.desc(), User.id.desc())
        .all()
    )

    return jsonify(
        {
            "folder": {"id": folder.id, "name": folder.name, "description": folder.description},
            "users": [
                {
                    "id": user.id,
                    "email": user.email,
                    "firstName": user.first_name,
                    "lastName": user.last_name,
                    "grantedAt": isoformat(granted_at),
                }
                for user, granted_at in rows
            ],
        }
    )
