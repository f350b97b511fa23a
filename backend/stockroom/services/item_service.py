# backend/stockroom/services/item_service.py
"""
Item catalogue service.

SKU is unique (case-insensitive) and immutable after creation. quantity is
never written here except through the opening-balance CHECKIN, so the
ledger accounts for every unit from the first commit.
"""
from __future__ import annotations

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Item, Movement, MovementType, User, AuditAction
from ..validation import ConflictError, NotFoundError, ValidationError, coerce_int
from ..time_utils import utcnow
from . import audit_service
from .movement_service import append_movement
from .query_service import QueryParameters, SortableListing, paginate

ITEM_MUTABLE_FIELDS = {
    "name", "description", "category", "location",
    "min_stock", "max_stock", "is_protective_equipment",
    "expiry_date", "next_inspection_date", "requires_maintenance", "next_maintenance_date",
    "unit_cost_cents",
}

ITEM_LISTING = SortableListing(
    sort_keys={
        "name": Item.name,
        "sku": Item.sku,
        "quantity": Item.quantity,
        "category": Item.category,
        "expiry_date": Item.expiry_date,
        "created_at": Item.created_at,
    },
    search_fields=(Item.name, Item.sku, Item.description, Item.category),
    default_sort="name",
    default_order="asc",
    tie_breaker=Item.id,
)

DELETE_BLOCKED_MESSAGE = "This item cannot be deleted because it has a movement history."


def apply_item_patch(item: Item, patch: dict) -> dict:
    """Apply mutable fields; returns {field: [old, new]} for the audit trail."""
    changes = {}
    for k, v in patch.items():
        if k not in ITEM_MUTABLE_FIELDS:
            continue
        old = getattr(item, k)
        if old != v:
            changes[k] = [old, v]
            setattr(item, k, v)
    return changes


def _check_thresholds(min_stock: int | None, max_stock: int | None) -> None:
    if min_stock is not None and max_stock is not None and min_stock > max_stock:
        raise ValidationError("min_stock cannot be greater than max_stock")


def get_item_by_sku(sku: str) -> Item | None:
    return (
        db.session.query(Item)
        .filter(func.lower(Item.sku) == (sku or "").strip().lower())
        .first()
    )


def get_item(item_id: int) -> Item:
    item = db.session.get(Item, item_id)
    if item is None:
        raise NotFoundError("Item not found")
    return item


def create_item(*, patch: dict, initial_quantity=0, operator_id: int | None = None) -> Item:
    """
    Create an item. A positive initial_quantity is booked as an opening
    CHECKIN by operator_id in the same commit.
    """
    sku = (patch.get("sku") or "").strip()
    if not sku:
        raise ValidationError("sku is required")
    if get_item_by_sku(sku) is not None:
        raise ConflictError(f"An item with SKU {sku} already exists")

    opening = coerce_int(initial_quantity or 0, "initial_quantity")
    if opening < 0:
        raise ValidationError("initial_quantity must be >= 0")
    operator = None
    if opening > 0:
        operator = db.session.get(User, operator_id) if operator_id is not None else None
        if operator is None:
            raise ValidationError("An operator is required to book an opening balance")

    _check_thresholds(patch.get("min_stock"), patch.get("max_stock"))

    item = Item(sku=sku)
    apply_item_patch(item, {k: v for k, v in patch.items() if k != "sku"})
    db.session.add(item)
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(f"An item with SKU {sku} already exists")

    if opening > 0:
        item.increase_stock(opening)
        append_movement(
            item=item,
            operator=operator,
            movement_type=MovementType.CHECKIN,
            quantity=opening,
            note="Opening balance",
        )

    audit_service.record_audit(
        action=AuditAction.CREATE,
        entity_name="Item",
        entity_id=item.id,
        actor_user_id=operator_id,
        details={"sku": sku, "name": item.name, "initial_quantity": opening},
    )
    db.session.commit()
    return item


def update_item(*, item_id: int, patch: dict, actor_user_id: int | None = None) -> Item:
    if "sku" in patch:
        raise ValidationError("sku cannot be changed after creation")
    item = get_item(item_id)

    min_stock = patch["min_stock"] if "min_stock" in patch else item.min_stock
    max_stock = patch["max_stock"] if "max_stock" in patch else item.max_stock
    _check_thresholds(min_stock, max_stock)

    changes = apply_item_patch(item, patch)
    if changes:
        item.updated_at = utcnow()
        audit_service.record_audit(
            action=AuditAction.UPDATE,
            entity_name="Item",
            entity_id=item.id,
            actor_user_id=actor_user_id,
            details=changes,
        )
    db.session.commit()
    return item


def delete_item(*, item_id: int, actor_user_id: int | None = None) -> None:
    """
    Delete an item with no ledger history.

    Raises ConflictError once any movement references the item; the FK on
    movements.item_id is the backstop for a movement committed in between.
    """
    item = get_item(item_id)
    if db.session.query(Movement.id).filter(Movement.item_id == item.id).first() is not None:
        raise ConflictError(DELETE_BLOCKED_MESSAGE)

    sku = item.sku
    db.session.delete(item)
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(DELETE_BLOCKED_MESSAGE)

    audit_service.record_audit(
        action=AuditAction.DELETE,
        entity_name="Item",
        entity_id=item_id,
        actor_user_id=actor_user_id,
        details={"sku": sku},
    )
    db.session.commit()


def list_items(params: QueryParameters) -> dict:
    return paginate(db.session.query(Item), params, ITEM_LISTING, serialize=lambda i: i.to_dict())
