from __future__ import annotations

from ..extensions import db
from stockcore.time_utils import to_utc_z


class User(db.Model):
    """
    Back-office user accounts, used for attribution of stock movements.

    WHY: Every stock movement must name who (or which admin identity) caused it.
    Authentication itself is handled outside this service.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.UniqueConstraint("username", name="uq_users_username"),
        db.UniqueConstraint("email", name="uq_users_email"),
        db.Index("ix_users_role_active", "role", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    username = db.Column(db.String(64), nullable=False, index=True)
    email = db.Column(db.String(255), nullable=False)

    # e.g. "Super Admin", "Admin", "Manager"
    role = db.Column(db.String(32), nullable=False, default="Admin")

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "role": self.role,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
