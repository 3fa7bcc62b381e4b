from __future__ import annotations

import enum
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerifyMismatchError

from .extensions import db


pwd_hasher = PasswordHasher()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(value: datetime | None) -> str | None:
    if value is None:
        return None
    # SQLite hands back naive datetimes; every stored value is UTC.
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def money(value: Decimal | float | int | None) -> float:
    if value is None:
        return 0.0
    return float(value)


class DonationStatus(str, enum.Enum):
    COMPLETED = "completed"


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    first_name = db.Column(db.String(120), nullable=True)
    last_name = db.Column(db.String(120), nullable=True)
    language = db.Column(db.String(8), nullable=False, default="es")
    is_admin = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)

    donations = db.relationship(
        "Donation",
        back_populates="user",
        cascade="all, delete-orphan",
        order_by="Donation.created_at.desc()",
    )
    folder_access = db.relationship(
        "FolderAccess",
        back_populates="user",
        cascade="all, delete-orphan",
    )

    def set_password(self, password: str) -> None:
        self.password_hash = pwd_hasher.hash(password)

    def verify_password(self, password: str) -> bool:
        try:
            return pwd_hasher.verify(self.password_hash, password)
        except (VerifyMismatchError, InvalidHashError):
            return False

    def public_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "language": self.language,
        }

    def to_dict(self) -> dict[str, Any]:
        payload = self.public_dict()
        payload["isAdmin"] = self.is_admin
        return payload


class Folder(db.Model):
    __tablename__ = "folders"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), unique=True, nullable=False)
    description = db.Column(db.Text, nullable=True)
    min_donation_amount = db.Column(db.Numeric(10, 2), nullable=False, default=Decimal("0"))
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)

    files = db.relationship("StoredFile", back_populates="folder", cascade="all, delete-orphan")
    access_grants = db.relationship(
        "FolderAccess",
        back_populates="folder",
        cascade="all, delete-orphan",
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "minDonationAmount": money(self.min_donation_amount),
            "createdAt": isoformat(self.created_at),
            "updatedAt": isoformat(self.updated_at),
        }


class StoredFile(db.Model):
    __tablename__ = "files"

    id = db.Column(db.Integer, primary_key=True)
    folder_id = db.Column(db.Integer, db.ForeignKey("folders.id", ondelete="CASCADE"), nullable=False, index=True)
    name = db.Column(db.String(512), nullable=False)
    original_name = db.Column(db.String(255), nullable=False)
    file_type = db.Column(db.String(255), nullable=True)
    file_size = db.Column(db.BigInteger, nullable=False, default=0)
    storage_path = db.Column(db.String(512), nullable=False, unique=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now, index=True)

    folder = db.relationship("Folder", back_populates="files")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "originalName": self.original_name,
            "fileType": self.file_type,
            "fileSize": self.file_size,
            "createdAt": isoformat(self.created_at),
        }

    def to_admin_dict(self) -> dict[str, Any]:
        payload = self.to_dict()
        payload["folderId"] = self.folder_id
        payload["folderName"] = self.folder.name if self.folder else None
        return payload


class Donation(db.Model):
    __tablename__ = "donations"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    currency = db.Column(db.String(8), nullable=False, default="USD")
    payment_provider = db.Column(db.String(32), nullable=False)
    payment_id = db.Column(db.String(255), nullable=False)
    status = db.Column(db.String(32), nullable=False, default=DonationStatus.COMPLETED.value)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now)

    user = db.relationship("User", back_populates="donations")

    __table_args__ = (db.UniqueConstraint("payment_provider", "payment_id", name="uq_donation_provider_payment"),)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "amount": money(self.amount),
            "currency": self.currency,
            "paymentProvider": self.payment_provider,
            "status": self.status,
            "createdAt": isoformat(self.created_at),
        }


class FolderAccess(db.Model):
    __tablename__ = "user_folder_access"

    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    folder_id = db.Column(db.Integer, db.ForeignKey("folders.id", ondelete="CASCADE"), primary_key=True, index=True)
    granted_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now)

    user = db.relationship("User", back_populates="folder_access")
    folder = db.relationship("Folder", back_populates="access_grants")


class AuditLog(db.Model):
    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True)
    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    action = db.Column(db.String(128), nullable=False, index=True)
    target_type = db.Column(db.String(64), nullable=True)
    target_id = db.Column(db.String(128), nullable=True)
    details = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now)
