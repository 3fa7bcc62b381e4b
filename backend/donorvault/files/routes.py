from __future__ import annotations

from flask import Blueprint, current_app, jsonify
from flask_jwt_extended import jwt_required

from ..common.errors import APIError
from ..common.params import json_payload, parse_int, parse_optional_int
from ..common.rbac import current_user
from ..common.storage import StorageError, get_storage, signed_url_ttl
from ..extensions import db
from ..models import Folder, StoredFile, money
from ..payments.entitlements import granted_folder_ids, has_folder_access


files_bp = Blueprint("files", __name__, url_prefix="/files")


def _get_file(file_id: int) -> StoredFile:
    item = db.session.get(StoredFile, file_id)
    if item is None:
        raise APIError(404, "FILE_NOT_FOUND", "File not found.")
    return item


@files_bp.post("/list")
@jwt_required()
def list_files():
    user = current_user(required=True)
    assert user is not None

    payload = json_payload()
    folder_id = parse_optional_int(payload.get("folderId"), "folderId")

    granted = granted_folder_ids(user.id)
    folders = Folder.query.order_by(Folder.id.asc()).all()
    folder_items = [
        {
            "id": folder.id,
            "name": folder.name,
            "description": folder.description,
            "minDonationAmount": money(folder.min_donation_amount),
            "hasAccess": folder.id in granted,
        }
        for folder in folders
    ]

    files: list[StoredFile] = []
    if folder_id is not None:
        if folder_id not in granted:
            raise APIError(403, "FORBIDDEN", "No access to this folder.")
        files = (
            StoredFile.query.filter(StoredFile.folder_id == folder_id)
            .order_by(StoredFile.created_at.desc(), StoredFile.id.desc())
            .all()
        )

    return jsonify({"folders": folder_items, "files": [item.to_dict() for item in files]})


@files_bp.post("/download")
@jwt_required()
def download_file():
    user = current_user(required=True)
    assert user is not None

    payload = json_payload()
    item = _get_file(parse_int(payload.get("fileId"), "fileId"))
    if not has_folder_access(user.id, item.folder_id):
        raise APIError(403, "FORBIDDEN", "No access to this file.")

    try:
        url = get_storage().signed_download_url(item.storage_path, signed_url_ttl())
    except StorageError as error:
        current_app.logger.exception("download URL generation failed for file_id=%s", item.id)
        raise APIError(500, "STORAGE_ERROR", "Failed to generate download URL.") from error

    return jsonify({"downloadUrl": url, "fileName": item.original_name})
