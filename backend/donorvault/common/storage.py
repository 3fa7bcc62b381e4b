from __future__ import annotations

import os
import re
from datetime import timedelta
from pathlib import Path
from typing import IO, Any

import boto3
import jwt
from botocore.exceptions import BotoCoreError, ClientError
from flask import current_app

from ..models import utc_now
from .errors import APIError


INVALID_NAME_PATTERN = re.compile(r"[\\/\x00]")
UPLOAD_SCOPE = "storage.upload"
DOWNLOAD_SCOPE = "storage.download"


class StorageError(Exception):
    pass


def validate_file_name(name: str) -> str:
    cleaned = Path((name or "").strip()).name
    if not cleaned:
        raise APIError(400, "INVALID_NAME", "File name cannot be empty.")
    if len(cleaned) > 255:
        raise APIError(400, "INVALID_NAME", "File name must be <= 255 characters.")
    if INVALID_NAME_PATTERN.search(cleaned):
        raise APIError(400, "INVALID_NAME", "File name contains invalid characters.")
    if cleaned in {".", ".."}:
        raise APIError(400, "INVALID_NAME", "Reserved name.")
    return cleaned


def build_storage_path(folder_id: int, file_name: str) -> str:
    timestamp = int(utc_now().timestamp() * 1000)
    return f"{folder_id}/{timestamp}_{file_name}"


class ObjectStorage:
    """Issues time-limited signed URLs for object transfer; never proxies bytes."""

    def signed_upload_url(self, path: str, ttl_seconds: int) -> str:
        raise NotImplementedError

    def signed_download_url(self, path: str, ttl_seconds: int) -> str:
        raise NotImplementedError

    def remove(self, path: str) -> None:
        raise NotImplementedError


class LocalObjectStorage(ObjectStorage):
    """Filesystem bucket whose signed URLs point at the /storage blueprint."""

    def __init__(self, root: Path, public_base_url: str, secret: str) -> None:
        self.root = root
        self.public_base_url = public_base_url.rstrip("/")
        self._secret = secret

    def _safe_resolve(self, relative_path: str) -> Path:
        root = self.root.resolve()
        candidate = (root / relative_path).resolve()
        if os.path.commonpath([str(root), str(candidate)]) != str(root):
            raise StorageError(f"storage path escapes bucket root: {relative_path}")
        return candidate

    def issue_token(self, scope: str, path: str, ttl_seconds: int) -> str:
        now = utc_now()
        payload = {
            "scope": scope,
            "path": path,
            "iat": now,
            "exp": now + timedelta(seconds=max(1, ttl_seconds)),
        }
        return jwt.encode(payload, self._secret, algorithm="HS256")

    def verify_token(self, token: str, expected_scope: str) -> str:
        try:
            payload = jwt.decode(token, self._secret, algorithms=["HS256"])
        except jwt.PyJWTError as error:
            raise APIError(401, "INVALID_TOKEN", "Invalid or expired storage URL.") from error

        path = payload.get("path")
        if payload.get("scope") != expected_scope or not isinstance(path, str) or not path:
            raise APIError(401, "INVALID_TOKEN", "Storage URL is not valid for this operation.")
        return path

    def _url(self, token: str) -> str:
        return f"{self.public_base_url}/storage/objects/{token}"

    def signed_upload_url(self, path: str, ttl_seconds: int) -> str:
        self._safe_resolve(path)
        return self._url(self.issue_token(UPLOAD_SCOPE, path, ttl_seconds))

    def signed_download_url(self, path: str, ttl_seconds: int) -> str:
        self._safe_resolve(path)
        return self._url(self.issue_token(DOWNLOAD_SCOPE, path, ttl_seconds))

    def write(self, path: str, stream: IO[bytes], chunk_size: int = 1024 * 1024) -> int:
        target = self._safe_resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        written = 0
        try:
            with target.open("wb") as output:
                while True:
                    chunk = stream.read(chunk_size)
                    if not chunk:
                        break
                    output.write(chunk)
                    written += len(chunk)
        except OSError as error:
            raise StorageError(f"could not write {path}") from error
        return written

    def resolve(self, path: str) -> Path:
        return self._safe_resolve(path)

    def remove(self, path: str) -> None:
        target = self._safe_resolve(path)
        try:
            target.unlink(missing_ok=True)
        except OSError as error:
            raise StorageError(f"could not remove {path}") from error


class S3ObjectStorage(ObjectStorage):
    def __init__(self, bucket: str, region: str, endpoint_url: str | None = None, client: Any = None) -> None:
        if not bucket:
            raise RuntimeError("S3_BUCKET must be configured when STORAGE_BACKEND=s3.")
        self.bucket = bucket
        self._client = client or boto3.client("s3", region_name=region, endpoint_url=endpoint_url or None)

    def _presign(self, method: str, path: str, ttl_seconds: int) -> str:
        try:
            return self._client.generate_presigned_url(
                method,
                Params={"Bucket": self.bucket, "Key": path},
                ExpiresIn=ttl_seconds,
            )
        except (BotoCoreError, ClientError) as error:
            raise StorageError(f"could not presign {method} for {path}") from error

    def signed_upload_url(self, path: str, ttl_seconds: int) -> str:
        return self._presign("put_object", path, ttl_seconds)

    def signed_download_url(self, path: str, ttl_seconds: int) -> str:
        return self._presign("get_object", path, ttl_seconds)

    def remove(self, path: str) -> None:
        try:
            self._client.delete_object(Bucket=self.bucket, Key=path)
        except (BotoCoreError, ClientError) as error:
            raise StorageError(f"could not remove {path}") from error


def build_storage(config: dict[str, Any]) -> ObjectStorage:
    backend = str(config.get("STORAGE_BACKEND") or "local").lower()
    if backend == "s3":
        return S3ObjectStorage(
            bucket=config.get("S3_BUCKET", ""),
            region=config.get("AWS_REGION", "us-east-1"),
            endpoint_url=config.get("S3_ENDPOINT_URL") or None,
        )
    if backend == "local":
        root = Path(config["STORAGE_ROOT"])
        root.mkdir(parents=True, exist_ok=True)
        return LocalObjectStorage(root, config["PUBLIC_BASE_URL"], config["JWT_SECRET_KEY"])
    raise RuntimeError(f"Unknown STORAGE_BACKEND: {backend}")


def get_storage() -> ObjectStorage:
    return current_app.extensions["object_storage"]


def signed_url_ttl() -> int:
    return int(current_app.config["SIGNED_URL_TTL_SECONDS"])
