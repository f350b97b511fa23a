# Overview: Checkout / check-in as one atomic unit of work, plus ledger queries.

"""
Movement Service

Invariants (authoritative)

- Item.quantity >= 0 at every commit point.
- Item.quantity == signed sum of the item's movements. Every stock change
  goes through append_movement() in the same transaction as the aggregate
  mutation; commit failure leaves neither visible.
- Movements are append-only (enforced by ORM listeners in models.inventory).
- occurred_at is server time and never goes backwards for a given item.

Request flow: validate -> lock/load item -> mutate aggregate -> append
movement + audit -> commit. A concurrent writer on the same item trips the
Item.version_id check (StaleDataError); run_atomic rolls back and re-runs
the whole flow, which re-reads the quantity and fails with
InsufficientStockError if the stock is gone.
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import case, func
from sqlalchemy.orm import aliased

from ..extensions import db
from ..models import Item, Movement, MovementType, User, AuditAction, StockStatus
from ..validation import NotFoundError, ValidationError, parse_optional_datetime, require_positive_int
from ..time_utils import utcnow
from . import audit_service
from .concurrency import lock_for_update, run_atomic
from .query_service import QueryParameters, SortableListing, paginate


Operator = aliased(User, name="operator")
Recipient = aliased(User, name="recipient")

MOVEMENT_LISTING = SortableListing(
    sort_keys={
        "occurred_at": Movement.occurred_at,
        "quantity": Movement.quantity,
        "type": Movement.type,
        "item_name": Item.name,
        "operator_name": Operator.full_name,
    },
    search_fields=(Item.name, Item.sku, Operator.full_name, Recipient.full_name),
    default_sort="occurred_at",
    default_order="desc",
    tie_breaker=Movement.id,
    joins=(
        (Item, Movement.item_id == Item.id),
        (Operator, Movement.operator_id == Operator.id),
        (Recipient, Movement.recipient_id == Recipient.id),
    ),
)


def _load_item_for_update(item_id: int) -> Item:
    item = lock_for_update(db.session.query(Item).filter(Item.id == item_id)).first()
    if item is None:
        raise NotFoundError("Item not found")
    return item


def _require_user(user_id: int | None) -> User:
    user = db.session.get(User, user_id) if user_id is not None else None
    if user is None:
        raise NotFoundError("User not found")
    return user


def _next_occurred_at(item_id: int) -> datetime:
    """Server time, clamped so the item's ledger never goes backwards."""
    now = utcnow()
    latest = (
        db.session.query(func.max(Movement.occurred_at))
        .filter(Movement.item_id == item_id)
        .scalar()
    )
    if latest is not None and latest > now:
        return latest
    return now


def append_movement(
    *,
    item: Item,
    operator: User,
    movement_type: MovementType,
    quantity: int,
    recipient: User | None = None,
    expected_return_date: datetime | None = None,
    note: str | None = None,
    digital_signature: str | None = None,
) -> Movement:
    """
    Append-only ledger write. No stock logic here; the caller has already
    mutated the aggregate in this transaction.
    """
    movement = Movement(
        item=item,
        operator=operator,
        recipient=recipient,
        type=MovementType(movement_type).value,
        quantity=quantity,
        occurred_at=_next_occurred_at(item.id) if item.id is not None else utcnow(),
        expected_return_date=expected_return_date,
        note=note,
        digital_signature=digital_signature,
    )
    db.session.add(movement)
    db.session.flush()  # ensures movement.id is assigned without committing
    return movement


def _clean_text(value: str | None, field: str, max_length: int | None = None) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    value = value.strip()
    if max_length and len(value) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return value or None


def register_checkout(
    *,
    item_id: int,
    operator_id: int,
    quantity,
    recipient_id: int | None = None,
    expected_return_date: datetime | None = None,
    digital_signature: str | None = None,
    note: str | None = None,
) -> Movement:
    """
    Withdraw stock and append a CHECKOUT entry.

    Raises:
        ValidationError: non-positive quantity, protective equipment without
            recipient or signature
        InsufficientStockError: quantity exceeds the persisted stock
        NotFoundError: item, operator or recipient missing
    """
    quantity = require_positive_int(quantity, "quantity")
    expected_return_date = parse_optional_datetime(expected_return_date, "expected_return_date")
    note = _clean_text(note, "note", 1000)
    signature = _clean_text(digital_signature, "digital_signature")

    def _op() -> Movement:
        item = _load_item_for_update(item_id)
        operator = _require_user(operator_id)
        recipient = _require_user(recipient_id) if recipient_id is not None else None

        if item.is_protective_equipment:
            if recipient is None:
                raise ValidationError("A recipient is required to check out protective equipment")
            if signature is None:
                raise ValidationError("A digital signature is required to check out protective equipment")

        item.decrease_stock(quantity)
        movement = append_movement(
            item=item,
            operator=operator,
            movement_type=MovementType.CHECKOUT,
            quantity=quantity,
            recipient=recipient,
            expected_return_date=expected_return_date,
            note=note,
            digital_signature=signature,
        )
        audit_service.record_audit(
            action=AuditAction.CHECKOUT,
            entity_name="Movement",
            entity_id=movement.id,
            actor_user_id=operator.id,
            details={"item_id": item.id, "quantity": quantity, "recipient_id": recipient_id},
        )
        db.session.commit()
        return movement

    movement = run_atomic(_op)
    if movement.item.stock_status == StockStatus.BELOW_MINIMUM.value:
        current_app.logger.info("Item %s fell below minimum stock (%s)", movement.item_id, movement.item.quantity)
    return movement


def register_checkin(
    *,
    item_id: int,
    operator_id: int,
    quantity,
    note: str | None = None,
    recipient_id: int | None = None,
) -> Movement:
    """
    Return stock and append a CHECKIN entry. No ceiling: stock above
    max_stock is accepted and only shows up as stock_status ABOVE_MAXIMUM.
    """
    quantity = require_positive_int(quantity, "quantity")
    note = _clean_text(note, "note", 1000)

    def _op() -> Movement:
        item = _load_item_for_update(item_id)
        operator = _require_user(operator_id)
        recipient = _require_user(recipient_id) if recipient_id is not None else None

        item.increase_stock(quantity)
        movement = append_movement(
            item=item,
            operator=operator,
            movement_type=MovementType.CHECKIN,
            quantity=quantity,
            recipient=recipient,
            note=note,
        )
        audit_service.record_audit(
            action=AuditAction.CHECKIN,
            entity_name="Movement",
            entity_id=movement.id,
            actor_user_id=operator.id,
            details={"item_id": item.id, "quantity": quantity},
        )
        db.session.commit()
        return movement

    movement = run_atomic(_op)
    if movement.item.stock_status == StockStatus.ABOVE_MAXIMUM.value:
        current_app.logger.info("Item %s is above maximum stock (%s)", movement.item_id, movement.item.quantity)
    return movement


# --- read side (no side effects) -------------------------------------------

def get_movement(movement_id: int) -> Movement:
    movement = db.session.get(Movement, movement_id)
    if movement is None:
        raise NotFoundError("Movement not found")
    return movement


def _newest_first(query):
    return query.order_by(Movement.occurred_at.desc(), Movement.id.desc()).all()


def movements_for_item(item_id: int) -> list[Movement]:
    if db.session.get(Item, item_id) is None:
        raise NotFoundError("Item not found")
    return _newest_first(db.session.query(Movement).filter(Movement.item_id == item_id))


def movements_by_operator(user_id: int) -> list[Movement]:
    _require_user(user_id)
    return _newest_first(db.session.query(Movement).filter(Movement.operator_id == user_id))


def movements_for_recipient(user_id: int) -> list[Movement]:
    _require_user(user_id)
    return _newest_first(db.session.query(Movement).filter(Movement.recipient_id == user_id))


def list_movements(params: QueryParameters) -> dict:
    return paginate(db.session.query(Movement), params, MOVEMENT_LISTING, serialize=lambda m: m.to_dict())


# --- ledger replay -----------------------------------------------------------

def replay_item_quantity(item_id: int) -> int:
    """Signed sum of every ledger entry of the item (CHECKIN +, CHECKOUT -)."""
    signed = case(
        (Movement.type == MovementType.CHECKOUT.value, -Movement.quantity),
        else_=Movement.quantity,
    )
    total = (
        db.session.query(func.coalesce(func.sum(signed), 0))
        .filter(Movement.item_id == item_id)
        .scalar()
    )
    return int(total or 0)


def check_item_ledger(item_id: int) -> dict:
    item = db.session.get(Item, item_id)
    if item is None:
        raise NotFoundError("Item not found")
    replayed = replay_item_quantity(item.id)
    return {
        "item_id": item.id,
        "sku": item.sku,
        "quantity": item.quantity,
        "ledger_quantity": replayed,
        "consistent": replayed == item.quantity,
    }


def verify_ledger() -> list[dict]:
    """Items whose cached quantity disagrees with their ledger."""
    mismatches = []
    for (item_id,) in db.session.query(Item.id).order_by(Item.id.asc()).all():
        result = check_item_ledger(item_id)
        if not result["consistent"]:
            mismatches.append(result)
    return mismatches
