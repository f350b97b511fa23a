from __future__ import annotations

import enum

from ..extensions import db
from stockroom.time_utils import to_utc_z, utcnow


class UserRole(str, enum.Enum):
    WAREHOUSE_MANAGER = "WAREHOUSE_MANAGER"
    HR = "HR"
    EMPLOYEE = "EMPLOYEE"
    # Passes every role gate
    ADMIN = "ADMIN"

    @classmethod
    def values(cls) -> list[str]:
        return [r.value for r in cls]


class User(db.Model):
    """
    Staff account. Operators register movements; recipients receive equipment.

    Email is stored lower-cased, so the unique constraint is case-insensitive.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.UniqueConstraint("email", name="uq_users_email"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    full_name = db.Column(db.String(150), nullable=False)
    email = db.Column(db.String(255), nullable=False, index=True)

    # Bcrypt hashed password
    password_hash = db.Column(db.String(255), nullable=False)

    role = db.Column(db.String(32), nullable=False, default=UserRole.EMPLOYEE.value)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    cost_center = db.Column(db.String(100), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=True)
    last_login_at = db.Column(db.DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r} role={self.role}>"

    def summary(self) -> dict:
        return {
            "id": self.id,
            "full_name": self.full_name,
            "email": self.email,
            "role": self.role,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "full_name": self.full_name,
            "email": self.email,
            "role": self.role,
            "is_active": self.is_active,
            "cost_center": self.cost_center,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "last_login_at": to_utc_z(self.last_login_at),
        }


class RefreshToken(db.Model):
    """
    Opaque refresh credential.

    SECURITY NOTES:
    - Only the SHA-256 digest is stored; the plaintext goes to the client once.
    - Rows are never deleted: a revoked row presented again is a theft signal.
    - family_id groups every token minted from one login (the rotation chain).
    - replaced_by_id points at the token minted when this one was rotated.
    """
    __tablename__ = "refresh_tokens"
    __table_args__ = (
        db.Index("ix_refresh_tokens_user_active", "user_id", "revoked_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    token_hash = db.Column(db.String(64), nullable=False, unique=True, index=True)
    family_id = db.Column(db.String(32), nullable=False, index=True)
    replaced_by_id = db.Column(db.Integer, db.ForeignKey("refresh_tokens.id"), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    expires_at = db.Column(db.DateTime, nullable=False, index=True)

    revoked_at = db.Column(db.DateTime, nullable=True)
    revoked_reason = db.Column(db.String(64), nullable=True)

    user = db.relationship("User", backref=db.backref("refresh_tokens", lazy="dynamic"))

    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None

    def is_expired(self, now) -> bool:
        return self.expires_at <= now

    def is_active(self, now) -> bool:
        return not self.is_revoked and not self.is_expired(now)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "family_id": self.family_id,
            "replaced_by_id": self.replaced_by_id,
            "created_at": to_utc_z(self.created_at),
            "expires_at": to_utc_z(self.expires_at),
            "revoked_at": to_utc_z(self.revoked_at),
            "revoked_reason": self.revoked_reason,
        }
