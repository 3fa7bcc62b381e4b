from __future__ import annotations

from pathlib import Path

from flask import Blueprint, current_app, jsonify, request, send_file

from ..common.errors import APIError
from ..common.storage import DOWNLOAD_SCOPE, UPLOAD_SCOPE, LocalObjectStorage, StorageError, get_storage


storage_bp = Blueprint("storage", __name__, url_prefix="/storage")


def _local_storage() -> LocalObjectStorage:
    storage = get_storage()
    if not isinstance(storage, LocalObjectStorage):
        raise APIError(404, "NOT_FOUND", "Local storage is not enabled.")
    return storage


@storage_bp.put("/objects/<token>")
def put_object(token: str):
    storage = _local_storage()
    path = storage.verify_token(token, UPLOAD_SCOPE)

    try:
        size = storage.write(path, request.stream)
    except StorageError as error:
        current_app.logger.exception("local storage write failed for %s", path)
        raise APIError(500, "STORAGE_ERROR", "Failed to store object.") from error

    return jsonify({"stored": True, "size": size})


@storage_bp.get("/objects/<token>")
def get_object(token: str):
    storage = _local_storage()
    path = storage.verify_token(token, DOWNLOAD_SCOPE)

    try:
        abs_path = storage.resolve(path)
    except StorageError as error:
        raise APIError(404, "OBJECT_NOT_FOUND", "Object not found.") from error
    if not abs_path.exists():
        raise APIError(404, "OBJECT_NOT_FOUND", "Object not found.")

    download_name = Path(path).name.split("_", 1)[-1]
    return send_file(abs_path, as_attachment=True, download_name=download_name)
