from __future__ import annotations

from decimal import Decimal

from flask import current_app
from sqlalchemy import text

from .common.params import normalize_email, validate_password
from .extensions import db
from .models import Folder, User


def ensure_default_folders() -> list[Folder]:
    config = current_app.config
    defaults = [
        (int(config["GENERAL_FOLDER_ID"]), "general", "Available to every donor.", Decimal("0")),
        (
            int(config["PREMIUM_FOLDER_ID"]),
            "premium",
            "Unlocked by a single donation at the premium threshold.",
            Decimal(str(config["PREMIUM_DONATION_THRESHOLD"])),
        ),
    ]

    folders: list[Folder] = []
    created_any = False
    for folder_id, name, description, min_amount in defaults:
        folder = db.session.get(Folder, folder_id)
        if folder is None:
            folder = Folder(id=folder_id, name=name, description=description, min_donation_amount=min_amount)
            db.session.add(folder)
            db.session.flush()
            created_any = True
        folders.append(folder)

    if created_any and db.engine.dialect.name == "postgresql":
        # Explicit ids leave the serial sequence behind.
        db.session.execute(text("SELECT setval(pg_get_serial_sequence('folders', 'id'), (SELECT MAX(id) FROM folders))"))
    return folders


def bootstrap_defaults(commit: bool = False) -> None:
    ensure_default_folders()
    if commit:
        db.session.commit()


def bootstrap_admin(email: str, password: str, force: bool = False) -> tuple[User, bool]:
    """Create or promote the administrator account.

    Refuses to run once any admin exists, unless ``force`` is set. Returns the
    user and whether it was newly created.
    """
    email = normalize_email(email)
    password = validate_password(password)

    existing_admin = User.query.filter(User.is_admin.is_(True)).first()
    if existing_admin is not None and existing_admin.email != email and not force:
        raise RuntimeError(f"An admin account already exists ({existing_admin.email}). Use force to add another.")

    user = User.query.filter(User.email == email).one_or_none()
    created = user is None
    if user is None:
        user = User(email=email, language=current_app.config["DEFAULT_LANGUAGE"])
        db.session.add(user)

    user.set_password(password)
    user.is_admin = True
    db.session.commit()

    current_app.logger.info("%s admin account %s", "created" if created else "updated", email)
    return user, created
