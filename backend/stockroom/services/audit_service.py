# Overview: Audit recorder; appends AuditLog rows inside the caller's transaction.

"""
Audit Recorder

- Append-only. No updates or deletes of existing rows.
- record_audit() writes the row inside a SAVEPOINT of the caller's
  transaction: it commits (or rolls back) together with the business change
  that triggered it.
- A failure to build or insert the row is logged and swallowed. Only the
  savepoint is rolled back, so the triggering operation still commits.
"""

from __future__ import annotations

import json
from typing import Any

from flask import current_app

from ..extensions import db
from ..models import AuditLog, AuditAction
from .query_service import QueryParameters, SortableListing, paginate


AUDIT_LISTING = SortableListing(
    sort_keys={
        "occurred_at": AuditLog.occurred_at,
        "action": AuditLog.action,
        "entity_name": AuditLog.entity_name,
    },
    search_fields=(AuditLog.entity_name, AuditLog.action, AuditLog.details),
    default_sort="occurred_at",
    default_order="desc",
    tie_breaker=AuditLog.id,
)


def _serialize_details(details: Any) -> str | None:
    if details is None:
        return None
    if isinstance(details, str):
        return details
    return json.dumps(details, default=str, sort_keys=True)


def record_audit(
    *,
    action: AuditAction | str,
    entity_name: str,
    entity_id: int | None = None,
    actor_user_id: int | None = None,
    details: Any = None,
) -> AuditLog | None:
    """Insert one audit row in the current transaction. Returns None if it could not be written."""
    # pending business rows flush first: their errors belong to the caller
    db.session.flush()
    try:
        entry = AuditLog(
            actor_user_id=actor_user_id,
            action=AuditAction(action).value,
            entity_name=entity_name,
            entity_id=entity_id,
            details=_serialize_details(details),
        )
        with db.session.begin_nested():
            db.session.add(entry)
        return entry
    except Exception:
        current_app.logger.exception(
            "Failed to record audit entry %s for %s:%s", action, entity_name, entity_id
        )
        return None


def list_audit_logs(params: QueryParameters) -> dict:
    query = db.session.query(AuditLog)
    return paginate(query, params, AUDIT_LISTING, serialize=lambda a: a.to_dict())
