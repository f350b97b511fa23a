# Overview: Staff account management (HR registers people; everyone edits their own profile).

from __future__ import annotations

from ..extensions import db
from ..models import User, UserRole, AuditAction
from ..validation import ConflictError, NotFoundError, ValidationError
from ..time_utils import utcnow
from . import audit_service
from .auth_service import hash_password, normalize_email
from .query_service import QueryParameters, SortableListing, paginate


USER_LISTING = SortableListing(
    sort_keys={
        "full_name": User.full_name,
        "email": User.email,
        "role": User.role,
        "created_at": User.created_at,
    },
    search_fields=(User.full_name, User.email, User.cost_center),
    default_sort="full_name",
    default_order="asc",
    tie_breaker=User.id,
)

PROFILE_FIELDS = {"full_name", "email", "cost_center"}


def _validate_email(email: str) -> str:
    email = normalize_email(email)
    if not email or "@" not in email or email.startswith("@") or email.endswith("@"):
        raise ValidationError("A valid email is required")
    return email


def _validate_role(role) -> str:
    if isinstance(role, UserRole):
        return role.value
    try:
        return UserRole(str(role).strip().upper()).value
    except ValueError:
        raise ValidationError(f"role must be one of: {', '.join(UserRole.values())}")


def _email_taken(email: str, exclude_user_id: int | None = None) -> bool:
    q = db.session.query(User.id).filter(User.email == email)
    if exclude_user_id is not None:
        q = q.filter(User.id != exclude_user_id)
    return q.first() is not None


def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


def register_user(
    *,
    full_name: str,
    email: str,
    password: str,
    role=UserRole.EMPLOYEE,
    cost_center: str | None = None,
    actor_user_id: int | None = None,
) -> User:
    full_name = full_name.strip() if isinstance(full_name, str) else ""
    if not full_name:
        raise ValidationError("full_name is required")
    email = _validate_email(email)
    if not isinstance(password, str) or not password.strip():
        raise ValidationError("password is required")
    role = _validate_role(role)
    if _email_taken(email):
        raise ConflictError("A user with this email already exists")

    user = User(
        full_name=full_name,
        email=email,
        password_hash=hash_password(password),
        role=role,
        cost_center=(cost_center.strip() or None) if isinstance(cost_center, str) else None,
        is_active=True,
    )
    db.session.add(user)
    db.session.flush()
    audit_service.record_audit(
        action=AuditAction.CREATE,
        entity_name="User",
        entity_id=user.id,
        actor_user_id=actor_user_id,
        details={"email": email, "role": role},
    )
    db.session.commit()
    return user


def update_profile(*, user_id: int, patch: dict) -> User:
    """Own-profile edit: full_name, email and cost_center only."""
    user = get_user(user_id)
    changes = {}
    for k, v in patch.items():
        if k not in PROFILE_FIELDS:
            raise ValidationError(f"Field not allowed: {k}")
        if v is not None and not isinstance(v, str):
            raise ValidationError(f"{k} must be a string")
        if k == "email":
            v = _validate_email(v)
            if _email_taken(v, exclude_user_id=user.id):
                raise ConflictError("A user with this email already exists")
        elif k == "full_name":
            v = (v or "").strip()
            if not v:
                raise ValidationError("full_name cannot be blank")
        else:
            v = (v or "").strip() or None
        if getattr(user, k) != v:
            changes[k] = [getattr(user, k), v]
            setattr(user, k, v)

    if changes:
        user.updated_at = utcnow()
        audit_service.record_audit(
            action=AuditAction.UPDATE,
            entity_name="User",
            entity_id=user.id,
            actor_user_id=user.id,
            details=changes,
        )
    db.session.commit()
    return user


def set_active(*, user_id: int, is_active: bool, actor_user_id: int | None = None) -> User:
    user = get_user(user_id)
    if user.is_active != is_active:
        user.is_active = is_active
        user.updated_at = utcnow()
        audit_service.record_audit(
            action=AuditAction.UPDATE,
            entity_name="User",
            entity_id=user.id,
            actor_user_id=actor_user_id,
            details={"is_active": is_active},
        )
    db.session.commit()
    return user


def list_users(params: QueryParameters) -> dict:
    return paginate(db.session.query(User), params, USER_LISTING, serialize=lambda u: u.to_dict())
