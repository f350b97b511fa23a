# Overview: Access-token signing and refresh-token issue/rotation/revocation.

"""
Token Service

Access tokens: short-lived JWTs (python-jose, HS256 by default) carrying
sub, role, email, name, iat, exp, iss, aud and type="access". Expiry is
checked against the server clock (time_utils.utcnow) so an injected clock
governs it.

Refresh tokens: opaque 256-bit random strings. Only the SHA-256 digest is
stored. State per row: Active -> Revoked (rotated / logout / password
change / reuse) or Active -> Expired. Nothing leads back to Active.

Rotation is a compare-and-swap: the presented row is revoked with
UPDATE ... WHERE revoked_at IS NULL, and only the request whose UPDATE hit
exactly one row gets the new pair. Every failure mode surfaces as the same
AuthenticationError, so a revoked token looks exactly like an unknown one.
"""

from __future__ import annotations

import hashlib
import secrets
from datetime import datetime, timedelta

from flask import current_app
from jose import jwt, JWTError
from sqlalchemy import update

from ..extensions import db
from ..models import RefreshToken, User, AuditAction
from ..validation import AuthenticationError
from ..time_utils import utcnow, to_epoch_seconds
from . import audit_service


INVALID_REFRESH_MESSAGE = "Invalid or expired refresh token"
INVALID_ACCESS_MESSAGE = "Invalid or expired token"


def generate_token() -> str:
    """32 random bytes, URL-safe base64 (~43 chars). Plaintext goes to the client only."""
    return secrets.token_urlsafe(32)


def hash_token(token: str) -> str:
    """SHA-256 is enough here: the input is already high-entropy."""
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def issue_access_token(user: User) -> tuple[str, datetime]:
    config = current_app.config
    now = utcnow()
    expires_at = now + timedelta(minutes=config["ACCESS_TOKEN_EXPIRE_MINUTES"])
    claims = {
        "sub": str(user.id),
        "role": user.role,
        "email": user.email,
        "name": user.full_name,
        "iat": to_epoch_seconds(now),
        "exp": to_epoch_seconds(expires_at),
        "iss": config["JWT_ISSUER"],
        "aud": config["JWT_AUDIENCE"],
        "type": "access",
    }
    token = jwt.encode(claims, config["JWT_SECRET_KEY"], algorithm=config["JWT_ALGORITHM"])
    return token, expires_at


def decode_access_token(token: str) -> dict:
    """Verify signature, issuer, audience and expiry. Raises AuthenticationError."""
    config = current_app.config
    try:
        claims = jwt.decode(
            token,
            config["JWT_SECRET_KEY"],
            algorithms=[config["JWT_ALGORITHM"]],
            audience=config["JWT_AUDIENCE"],
            issuer=config["JWT_ISSUER"],
            options={"verify_exp": False},
        )
    except JWTError:
        raise AuthenticationError(INVALID_ACCESS_MESSAGE)

    if claims.get("type") != "access":
        raise AuthenticationError(INVALID_ACCESS_MESSAGE)
    exp = claims.get("exp")
    if not isinstance(exp, int) or exp <= to_epoch_seconds(utcnow()):
        raise AuthenticationError(INVALID_ACCESS_MESSAGE)
    if not str(claims.get("sub", "")).isdigit():
        raise AuthenticationError(INVALID_ACCESS_MESSAGE)
    return claims


def create_refresh_token(user_id: int, family_id: str | None = None) -> tuple[RefreshToken, str]:
    """
    Add a new refresh token to the session (flushed, not committed).

    Returns (record, plaintext_token).
    """
    plaintext = generate_token()
    now = utcnow()
    record = RefreshToken(
        user_id=user_id,
        token_hash=hash_token(plaintext),
        family_id=family_id or secrets.token_hex(16),
        created_at=now,
        expires_at=now + timedelta(days=current_app.config["REFRESH_TOKEN_EXPIRE_DAYS"]),
    )
    db.session.add(record)
    db.session.flush()
    return record, plaintext


def find_refresh_token(plaintext: str | None) -> RefreshToken | None:
    if not plaintext or not isinstance(plaintext, str):
        return None
    return db.session.query(RefreshToken).filter_by(token_hash=hash_token(plaintext)).first()


def _handle_reuse(record: RefreshToken) -> None:
    """A revoked token came back. Record it, optionally burn the chain, then fail."""
    current_app.logger.warning(
        "Refresh token reuse detected for user %s (token %s, family %s)",
        record.user_id, record.id, record.family_id,
    )
    details = {"token_id": record.id, "family_id": record.family_id, "revoked_reason": record.revoked_reason}
    if current_app.config.get("REFRESH_REUSE_REVOKES_FAMILY"):
        details["family_revoked"] = revoke_family(record.family_id, reason="reuse_detected")
    audit_service.record_audit(
        action=AuditAction.TOKEN_REUSE,
        entity_name="RefreshToken",
        entity_id=record.id,
        actor_user_id=record.user_id,
        details=details,
    )
    db.session.commit()


def rotate_refresh_token(plaintext: str) -> tuple[User, RefreshToken, str]:
    """
    Exchange an active refresh token for a new one (same family).

    Adds and flushes the new row, then revokes the presented one with a
    conditional UPDATE. Does not commit; the caller commits the pair together
    with the audit row. Raises AuthenticationError on every failure.
    """
    record = find_refresh_token(plaintext)
    if record is None:
        raise AuthenticationError(INVALID_REFRESH_MESSAGE)

    if record.is_revoked:
        _handle_reuse(record)
        raise AuthenticationError(INVALID_REFRESH_MESSAGE)

    now = utcnow()
    if record.is_expired(now):
        raise AuthenticationError(INVALID_REFRESH_MESSAGE)

    user = db.session.get(User, record.user_id)
    if user is None or not user.is_active:
        raise AuthenticationError(INVALID_REFRESH_MESSAGE)

    new_record, new_plaintext = create_refresh_token(user.id, family_id=record.family_id)

    result = db.session.execute(
        update(RefreshToken)
        .where(RefreshToken.id == record.id, RefreshToken.revoked_at.is_(None))
        .values(revoked_at=now, revoked_reason="rotated", replaced_by_id=new_record.id)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        # Another request rotated this token first
        db.session.rollback()
        raise AuthenticationError(INVALID_REFRESH_MESSAGE)

    return user, new_record, new_plaintext


def revoke_refresh_token(plaintext: str | None, reason: str = "logout") -> RefreshToken | None:
    """Revoke one token if it is still active. Does not commit."""
    record = find_refresh_token(plaintext)
    if record is None or record.is_revoked:
        return None
    db.session.execute(
        update(RefreshToken)
        .where(RefreshToken.id == record.id, RefreshToken.revoked_at.is_(None))
        .values(revoked_at=utcnow(), revoked_reason=reason)
        .execution_options(synchronize_session=False)
    )
    db.session.expire(record)
    return record


def revoke_all_user_tokens(user_id: int, reason: str) -> int:
    """Revoke every non-revoked refresh token of a user. Does not commit."""
    result = db.session.execute(
        update(RefreshToken)
        .where(RefreshToken.user_id == user_id, RefreshToken.revoked_at.is_(None))
        .values(revoked_at=utcnow(), revoked_reason=reason)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def revoke_family(family_id: str, reason: str) -> int:
    result = db.session.execute(
        update(RefreshToken)
        .where(RefreshToken.family_id == family_id, RefreshToken.revoked_at.is_(None))
        .values(revoked_at=utcnow(), revoked_reason=reason)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount
