from __future__ import annotations

from flask import current_app, jsonify
from sqlalchemy import func
from sqlalchemy.orm import joinedload

from ..common.audit import audit
from ..common.errors import APIError
from ..common.params import json_payload, optional_text, parse_int, parse_optional_int, parse_page
from ..common.rbac import admin_required, current_user
from ..common.storage import StorageError, build_storage_path, get_storage, signed_url_ttl, validate_file_name
from ..extensions import db
from ..models import StoredFile
from .routes import _get_folder, admin_bp


def _get_file(file_id: int) -> StoredFile:
    item = db.session.get(StoredFile, file_id)
    if item is None:
        raise APIError(404, "FILE_NOT_FOUND", "File not found.")
    return item


@admin_bp.post("/files")
@admin_required
def list_files():
    payload = json_payload()
    folder_id = parse_optional_int(payload.get("folderId"), "folderId")
    page, limit = parse_page(payload, default_limit=50)

    query = StoredFile.query.options(joinedload(StoredFile.folder))
    count_query = db.session.query(func.count(StoredFile.id))
    if folder_id:
        query = query.filter(StoredFile.folder_id == folder_id)
        count_query = count_query.filter(StoredFile.folder_id == folder_id)

    items = (
        query.order_by(StoredFile.created_at.desc(), StoredFile.id.desc())
        .limit(limit)
        .offset((page - 1) * limit)
        .all()
    )

    return jsonify(
        {
            "files": [item.to_admin_dict() for item in items],
            "total": count_query.scalar() or 0,
            "page": page,
            "limit": limit,
        }
    )


@admin_bp.post("/files/upload")
@admin_required
def upload_file():
    actor = current_user(required=True)
    assert actor is not None

    payload = json_payload()
    folder_id = parse_int(payload.get("folderId"), "folderId")
    file_name = validate_file_name(str(payload.get("fileName") or ""))
    file_type = optional_text(payload.get("fileType")) or "application/octet-stream"
    file_size = parse_int(payload.get("fileSize", 0), "fileSize")
    if file_size < 0:
        raise APIError(400, "INVALID_PARAMETER", "fileSize cannot be negative.")

    folder = _get_folder(folder_id)
    storage_path = build_storage_path(folder.id, file_name)

    try:
        upload_url = get_storage().signed_upload_url(storage_path, signed_url_ttl())
    except StorageError as error:
        current_app.logger.exception("upload URL generation failed for %s", storage_path)
        raise APIError(500, "STORAGE_ERROR", "Failed to generate upload URL.") from error

    item = StoredFile(
        folder_id=folder.id,
        name=storage_path,
        original_name=file_name,
        file_type=file_type,
        file_size=file_size,
        storage_path=storage_path,
    )
    db.session.add(item)
    db.session.flush()
    audit(
        action="admin.file_upload",
        actor=actor,
        target_type="file",
        target_id=str(item.id),
        details={"folder_id": folder.id, "name": file_name, "size": file_size},
    )
    db.session.commit()

    return jsonify({"uploadUrl": upload_url, "fileId": item.id}), 201


@admin_bp.put("/files/update")
@admin_required
def update_file():
    actor = current_user(required=True)
    assert actor is not None

    payload = json_payload()
    item = _get_file(parse_int(payload.get("fileId"), "fileId"))

    target_folder_id = parse_optional_int(payload.get("folderId"), "folderId")
    if target_folder_id is not None and target_folder_id != item.folder_id:
        try:
            folder = _get_folder(target_folder_id)
        except APIError as error:
            raise APIError(404, "FOLDER_NOT_FOUND", "Target folder not found.") from error
        item.folder = folder

    if payload.get("originalName") is not None:
        item.original_name = validate_file_name(str(payload.get("originalName")))

    audit(
        action="admin.file_update",
        actor=actor,
        target_type="file",
        target_id=str(item.id),
        details={"folder_id": item.folder_id, "original_name": item.original_name},
    )
    db.session.commit()

    return jsonify(item.to_admin_dict())


@admin_bp.delete("/files/delete")
@admin_required
def delete_file():
    actor = current_user(required=True)
    assert actor is not None

    payload = json_payload()
    item = _get_file(parse_int(payload.get("fileId"), "fileId"))
    file_id = item.id
    storage_path = item.storage_path

    # Flush only; a storage failure below rolls the delete back.
    db.session.delete(item)
    db.session.flush()
    try:
        get_storage().remove(storage_path)
    except StorageError as error:
        db.session.rollback()
        current_app.logger.exception("storage delete failed for file_id=%s", file_id)
        raise APIError(500, "STORAGE_ERROR", "Failed to delete file.") from error

    audit(
        action="admin.file_delete",
        actor=actor,
        target_type="file",
        target_id=str(file_id),
        details={"storage_path": storage_path},
    )
    db.session.commit()

    return jsonify({"success": True})
