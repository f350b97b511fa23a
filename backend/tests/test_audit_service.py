"""
Audit recorder tests.

Verifies:
- audit rows live and die with the caller's transaction
- a broken audit row is logged and never raised, even when its INSERT fails
- listing is newest first and searchable
"""

import logging

from stockroom.extensions import db
from stockroom.models import AuditLog, AuditAction, User
from stockroom.services import audit_service, item_service, user_service
from stockroom.services.query_service import QueryParameters


def _count(**filters):
    return db.session.query(AuditLog).filter_by(**filters).count()


def test_record_is_uncommitted_until_caller_commits(db_session, manager):
    audit_service.record_audit(action=AuditAction.UPDATE, entity_name="Item", entity_id=7, actor_user_id=manager.id)
    db.session.rollback()
    assert _count(entity_name="Item", entity_id=7) == 0

    audit_service.record_audit(action=AuditAction.UPDATE, entity_name="Item", entity_id=7, actor_user_id=manager.id)
    db.session.commit()
    assert _count(entity_name="Item", entity_id=7) == 1


def test_details_are_stored_as_json(db_session, manager):
    entry = audit_service.record_audit(
        action="UPDATE",
        entity_name="Item",
        entity_id=1,
        actor_user_id=manager.id,
        details={"name": ["Old", "New"], "b": 1},
    )
    db.session.commit()
    assert entry.details == '{"b": 1, "name": ["Old", "New"]}'
    assert entry.to_dict()["actor_name"] == "Marta Manager"


def test_bad_entry_is_logged_and_swallowed(db_session, caplog):
    with caplog.at_level(logging.ERROR):
        result = audit_service.record_audit(action="NOT_AN_ACTION", entity_name="Item", entity_id=1)

    assert result is None
    assert "Failed to record audit entry" in caplog.text
    db.session.commit()
    assert _count(entity_name="Item", entity_id=1) == 0


def test_listing_newest_first_and_search(db_session, clock, manager):
    # registering the manager already wrote one CREATE row
    clock.advance(minutes=1)
    audit_service.record_audit(action=AuditAction.UPDATE, entity_name="Item", entity_id=1, details={"note": "first"})
    db.session.commit()
    clock.advance(minutes=1)
    audit_service.record_audit(action=AuditAction.DELETE, entity_name="Item", entity_id=2, details={"note": "second"})
    db.session.commit()

    page = audit_service.list_audit_logs(QueryParameters())
    assert [e["action"] for e in page["items"]][:2] == ["DELETE", "UPDATE"]

    found = audit_service.list_audit_logs(QueryParameters(search_term="second"))
    assert found["total_count"] == 1
    assert found["items"][0]["entity_id"] == 2


def test_failed_audit_insert_keeps_the_business_change(db_session, caplog):
    # actor 9999 does not exist: the audit INSERT itself hits the FK
    with caplog.at_level(logging.ERROR):
        item = item_service.create_item(patch={"sku": "AUD-1", "name": "Audited"}, operator_id=9999)

    db.session.expire_all()
    assert item_service.get_item_by_sku("AUD-1") is not None
    assert item.id is not None
    assert "Failed to record audit entry" in caplog.text
    assert _count(entity_name="Item") == 0


def test_failed_audit_insert_leaves_session_usable(db_session, employee):
    user_service.set_active(user_id=employee.id, is_active=False, actor_user_id=9999)
    db.session.expire_all()
    assert db.session.get(User, employee.id).is_active is False

    user_service.set_active(user_id=employee.id, is_active=True)
    assert _count(entity_name="User", entity_id=employee.id, action="UPDATE") == 1

