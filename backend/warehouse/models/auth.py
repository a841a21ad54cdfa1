from __future__ import annotations

from enum import Enum

from ..extensions import db


class Role(str, Enum):
    EMPLOYEE = "EMPLOYEE"
    MANAGER = "MANAGER"

    @classmethod
    def parse(cls, value: str | None) -> "Role":
        """Closed-set parse; unknown strings raise ValueError."""
        if isinstance(value, cls):
            return value
        if value is None:
            raise ValueError("role is required")
        return cls(str(value).strip().upper())


class User(db.Model):
    """
    Local mirror of an identity provider account.

    The identity provider owns credentials; this row owns attribution. Rows
    are never hard-deleted so audit entries keep resolving after a user
    leaves: deactivation sets active=False and removes the provider account.

    At least one active MANAGER must exist at all times.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.CheckConstraint("role IN ('EMPLOYEE', 'MANAGER')", name="ck_users_role_valid"),
        db.Index("ix_users_role_active", "role", "active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Identity provider's opaque id; nullable only for legacy rows
    external_id = db.Column(db.String(64), nullable=True, unique=True, index=True)

    username = db.Column(db.String(50), nullable=False, unique=True, index=True)
    first_name = db.Column(db.String(100), nullable=True)
    last_name = db.Column(db.String(100), nullable=True)

    role = db.Column(db.String(32), nullable=False, default=Role.EMPLOYEE.value)
    active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def is_manager(self) -> bool:
        return self.role == Role.MANAGER.value

    def __repr__(self) -> str:
        return f"<User id={self.id} username={self.username!r} role={self.role} active={self.active}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "role": self.role,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "active": self.active,
        }
