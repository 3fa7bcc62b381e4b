from __future__ import annotations

from decimal import Decimal

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Donation, DonationStatus, FolderAccess


def folders_for_amount(amount: Decimal) -> list[int]:
    """Folder ids unlocked by a single confirmed donation of ``amount``.

    The general folder is granted for any donation; the premium folder only
    when the donation reaches PREMIUM_DONATION_THRESHOLD.
    """
    config = current_app.config
    folder_ids = [int(config["GENERAL_FOLDER_ID"])]
    if amount >= Decimal(str(config["PREMIUM_DONATION_THRESHOLD"])):
        folder_ids.append(int(config["PREMIUM_FOLDER_ID"]))
    return folder_ids


def has_folder_access(user_id: int, folder_id: int) -> bool:
    return db.session.get(FolderAccess, (user_id, folder_id)) is not None


def grant_folder_access(user_id: int, folder_id: int) -> bool:
    """Insert the (user, folder) grant unless it already exists.

    Returns True when a new grant row was written.
    """
    if has_folder_access(user_id, folder_id):
        return False

    try:
        with db.session.begin_nested():
            db.session.add(FolderAccess(user_id=user_id, folder_id=folder_id))
    except IntegrityError:
        # A concurrent request inserted the same pair first.
        return False
    return True


def revoke_folder_access(user_id: int, folder_id: int) -> bool:
    grant = db.session.get(FolderAccess, (user_id, folder_id))
    if grant is None:
        return False
    db.session.delete(grant)
    return True


def granted_folder_ids(user_id: int) -> set[int]:
    rows = db.session.query(FolderAccess.folder_id).filter(FolderAccess.user_id == user_id).all()
    return {row[0] for row in rows}


def total_donated(user_id: int) -> Decimal:
    total = (
        db.session.query(func.coalesce(func.sum(Donation.amount), 0))
        .filter(Donation.user_id == user_id, Donation.status == DonationStatus.COMPLETED.value)
        .scalar()
    )
    return Decimal(str(total or 0))
