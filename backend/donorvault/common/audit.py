from __future__ import annotations

from typing import Any

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import AuditLog, User


def audit(
    action: str,
    actor: User | None = None,
    target_type: str | None = None,
    target_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> AuditLog | None:
    entry = AuditLog(
        actor_user_id=actor.id if actor else None,
        action=action,
        target_type=target_type,
        target_id=target_id,
        details=details or {},
    )
    # Audit failures never fail the primary action.
    try:
        with db.session.begin_nested():
            db.session.add(entry)
            db.session.flush([entry])
    except SQLAlchemyError:
        current_app.logger.warning("audit entry %s could not be written", action, exc_info=True)
        return None

    return entry
