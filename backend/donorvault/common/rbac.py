from __future__ import annotations

from functools import wraps
from typing import Any, Callable

from flask_jwt_extended import get_jwt_identity, verify_jwt_in_request

from ..extensions import db
from ..models import User
from .errors import APIError


def current_user(required: bool = True) -> User | None:
    identity = get_jwt_identity()
    if identity is None:
        if required:
            raise APIError(401, "UNAUTHENTICATED", "Authentication required.")
        return None

    try:
        user_id = int(identity)
    except (TypeError, ValueError) as error:
        raise APIError(401, "UNAUTHENTICATED", "Invalid session.") from error

    user = db.session.get(User, user_id)
    if user is None and required:
        raise APIError(401, "UNAUTHENTICATED", "Invalid session.")
    return user


def admin_required(func: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        verify_jwt_in_request()
        user = current_user(required=True)
        assert user is not None
        if not user.is_admin:
            raise APIError(403, "FORBIDDEN", "Admin access required.")
        return func(*args, **kwargs)

    return wrapper
