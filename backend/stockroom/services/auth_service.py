# Overview: Login, refresh, logout and password change on top of token_service.

"""
Authentication Service

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor from BCRYPT_ROUNDS, 12 by default)
- Login failures never say which part was wrong (no user-existence leak)
- Every refresh rotates the refresh token; the old one is dead afterwards
- Password change requires the current password, even with a valid session,
  and revokes every outstanding refresh token of the user
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

import bcrypt
from flask import current_app

from ..extensions import db
from ..models import User, RefreshToken, AuditAction
from ..validation import AuthenticationError, NotFoundError, ValidationError
from ..time_utils import utcnow, to_utc_z
from . import audit_service, token_service
from .concurrency import run_atomic


INVALID_CREDENTIALS_MESSAGE = "Invalid credentials"


@dataclass
class AuthResult:
    user: User
    access_token: str
    expires_at: datetime
    refresh_token: str
    refresh_expires_at: datetime

    def to_dict(self) -> dict:
        return {
            "access_token": self.access_token,
            "token_type": "bearer",
            "expires_at": to_utc_z(self.expires_at),
            "refresh_token": self.refresh_token,
            "refresh_expires_at": to_utc_z(self.refresh_expires_at),
            "user": self.user.summary(),
        }


def normalize_email(email) -> str:
    if not isinstance(email, str):
        return ""
    return email.strip().lower()


def hash_password(password: str) -> str:
    rounds = current_app.config.get("BCRYPT_ROUNDS", 12)
    salt = bcrypt.gensalt(rounds=rounds)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')  # Store as string in database


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    Returns False on mismatch and on malformed hashes.
    """
    if not isinstance(password, str) or not isinstance(password_hash, str):
        return False
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def authenticate(email: str, password: str) -> User | None:
    """Return the active user matching email + password, or None."""
    user = db.session.query(User).filter_by(email=normalize_email(email)).first()
    if user is None or not user.is_active:
        return None
    if not verify_password(password, user.password_hash):
        return None
    return user


def _issue_pair(user: User, refresh_record: RefreshToken, refresh_plaintext: str) -> AuthResult:
    access_token, expires_at = token_service.issue_access_token(user)
    return AuthResult(
        user=user,
        access_token=access_token,
        expires_at=expires_at,
        refresh_token=refresh_plaintext,
        refresh_expires_at=refresh_record.expires_at,
    )


def login(email: str, password: str) -> AuthResult:
    """
    Verify credentials and issue an access token plus a new refresh token.

    Raises AuthenticationError("Invalid credentials") for unknown email,
    inactive account and wrong password alike.
    """
    user = authenticate(email, password)
    if user is None:
        known = db.session.query(User.id).filter_by(email=normalize_email(email)).scalar()
        audit_service.record_audit(
            action=AuditAction.LOGIN_FAILURE,
            entity_name="User",
            entity_id=known,
            details={"email": normalize_email(email)},
        )
        db.session.commit()
        raise AuthenticationError(INVALID_CREDENTIALS_MESSAGE)

    user.last_login_at = utcnow()
    record, plaintext = token_service.create_refresh_token(user.id)
    audit_service.record_audit(
        action=AuditAction.LOGIN_SUCCESS,
        entity_name="User",
        entity_id=user.id,
        actor_user_id=user.id,
    )
    result = _issue_pair(user, record, plaintext)
    db.session.commit()
    return result


def refresh(refresh_token: str) -> AuthResult:
    """
    Rotate a refresh token and mint a new access token.

    The revocation of the presented token, the new token row and the audit
    row commit together. Concurrent callers presenting the same token get
    one success; the rest get AuthenticationError.
    """
    def _op():
        user, record, plaintext = token_service.rotate_refresh_token(refresh_token)
        audit_service.record_audit(
            action=AuditAction.TOKEN_REFRESH,
            entity_name="RefreshToken",
            entity_id=record.id,
            actor_user_id=user.id,
        )
        result = _issue_pair(user, record, plaintext)
        db.session.commit()
        return result

    return run_atomic(_op)


def logout(refresh_token: str | None, *, actor_user_id: int | None = None) -> bool:
    """Revoke the presented refresh token. Unknown or already-revoked tokens are a no-op."""
    record = token_service.revoke_refresh_token(refresh_token, reason="logout")
    if record is None:
        db.session.rollback()
        return False
    audit_service.record_audit(
        action=AuditAction.LOGOUT,
        entity_name="RefreshToken",
        entity_id=record.id,
        actor_user_id=actor_user_id or record.user_id,
    )
    db.session.commit()
    return True


def change_password(*, user_id: int, current_password: str, new_password: str) -> None:
    """
    Replace the password after proving knowledge of the current one.

    Raises ValidationError when the current password is wrong or the new one
    is empty. Revokes all refresh tokens of the user on success.
    """
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    if not isinstance(current_password, str) or not verify_password(current_password, user.password_hash):
        raise ValidationError("Current password is incorrect")
    if not isinstance(new_password, str) or not new_password.strip():
        raise ValidationError("New password is required")

    user.password_hash = hash_password(new_password)
    user.updated_at = utcnow()
    revoked = token_service.revoke_all_user_tokens(user.id, reason="password_change")
    audit_service.record_audit(
        action=AuditAction.PASSWORD_CHANGE,
        entity_name="User",
        entity_id=user.id,
        actor_user_id=user.id,
        details={"refresh_tokens_revoked": revoked},
    )
    db.session.commit()
