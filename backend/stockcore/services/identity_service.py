# Overview: Resolves which back-office user a stock movement is attributed to.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import User
from .errors import ResolutionError


def find_default_admin_id(role: str | None = None) -> int | None:
    """Oldest active user holding the configured default admin role."""
    role = role or current_app.config["DEFAULT_ADMIN_ROLE"]
    row = (
        db.session.query(User.id)
        .filter(User.role == role, User.is_active.is_(True))
        .order_by(User.id.asc())
        .first()
    )
    return row[0] if row else None


def resolve_acting_user(explicit_user_id: int | None = None) -> int:
    """
    Acting user for a ledger entry.

    The explicit reference wins; otherwise the default administrative
    identity is used. Raises ResolutionError when neither exists.
    """
    if explicit_user_id is not None:
        return explicit_user_id

    admin_id = find_default_admin_id()
    if admin_id is None:
        raise ResolutionError(
            "No acting user: order has no admin reference and no default admin exists",
            details={"role": current_app.config["DEFAULT_ADMIN_ROLE"]},
        )
    return admin_id
