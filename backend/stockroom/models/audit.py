from __future__ import annotations

import enum

from ..extensions import db
from stockroom.time_utils import to_utc_z, utcnow


class AuditAction(str, enum.Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    CHECKOUT = "CHECKOUT"
    CHECKIN = "CHECKIN"
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILURE = "LOGIN_FAILURE"
    LOGOUT = "LOGOUT"
    TOKEN_REFRESH = "TOKEN_REFRESH"
    TOKEN_REUSE = "TOKEN_REUSE"
    PASSWORD_CHANGE = "PASSWORD_CHANGE"


class AuditLog(db.Model):
    """
    Append-only record of who did what to which entity.

    Written in the same transaction as the action it describes; read only
    by the audit listing.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("ix_audit_logs_entity", "entity_name", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    action = db.Column(db.String(32), nullable=False, index=True)
    entity_name = db.Column(db.String(64), nullable=False)
    entity_id = db.Column(db.Integer, nullable=True)
    details = db.Column(db.Text, nullable=True)
    occurred_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)

    actor = db.relationship("User", foreign_keys=[actor_user_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "actor_user_id": self.actor_user_id,
            "actor_name": self.actor.full_name if self.actor else None,
            "action": self.action,
            "entity_name": self.entity_name,
            "entity_id": self.entity_id,
            "details": self.details,
            "occurred_at": to_utc_z(self.occurred_at),
        }
