from __future__ import annotations

import enum

from sqlalchemy import event
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.orm import object_session

from ..extensions import db
from ..validation import InvalidArgumentError, InsufficientStockError
from stockroom.time_utils import to_utc_z, utcnow


class MovementType(str, enum.Enum):
    CHECKOUT = "CHECKOUT"
    CHECKIN = "CHECKIN"


class StockStatus(str, enum.Enum):
    BELOW_MINIMUM = "BELOW_MINIMUM"
    OK = "OK"
    ABOVE_MAXIMUM = "ABOVE_MAXIMUM"


class ImmutableLedgerError(RuntimeError):
    """Raised when something tries to update or delete a ledger entry."""


class Item(db.Model):
    """
    Stock item (aggregate root).

    quantity is a cached projection of the movement ledger. It has no setter:
    the only writers are increase_stock/decrease_stock, and the only callers
    of those are the movement service and the opening-balance path in
    item_service, both of which append the matching Movement in the same
    transaction.

    version_id is the optimistic row version. A concurrent writer that read
    the same version fails its flush with StaleDataError and is retried.
    """
    __tablename__ = "items"
    __table_args__ = (
        db.CheckConstraint("quantity >= 0", name="ck_items_quantity_non_negative"),
        db.Index("ix_items_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Immutable after creation
    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    category = db.Column(db.String(100), nullable=True)
    location = db.Column(db.String(100), nullable=True)

    _quantity = db.Column("quantity", db.Integer, nullable=False, default=0)
    min_stock = db.Column(db.Integer, nullable=True)
    max_stock = db.Column(db.Integer, nullable=True)

    is_protective_equipment = db.Column(db.Boolean, nullable=False, default=False)
    expiry_date = db.Column(db.DateTime, nullable=True)
    next_inspection_date = db.Column(db.DateTime, nullable=True)
    requires_maintenance = db.Column(db.Boolean, nullable=False, default=False)
    next_maintenance_date = db.Column(db.DateTime, nullable=True)

    unit_cost_cents = db.Column(db.Integer, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": version_id}

    @hybrid_property
    def quantity(self) -> int:
        return self._quantity if self._quantity is not None else 0

    @quantity.expression
    def quantity(cls):
        return cls._quantity

    def increase_stock(self, amount: int) -> None:
        if amount <= 0:
            raise InvalidArgumentError("The amount to add must be positive.")
        self._quantity = self.quantity + amount
        self.updated_at = utcnow()

    def decrease_stock(self, amount: int) -> None:
        if amount <= 0:
            raise InvalidArgumentError("The amount to withdraw must be positive.")
        if amount > self.quantity:
            raise InsufficientStockError("Insufficient stock to perform the withdrawal.")
        self._quantity = self.quantity - amount
        self.updated_at = utcnow()

    @property
    def stock_status(self) -> str:
        if self.min_stock is not None and self.quantity < self.min_stock:
            return StockStatus.BELOW_MINIMUM.value
        if self.max_stock is not None and self.quantity > self.max_stock:
            return StockStatus.ABOVE_MAXIMUM.value
        return StockStatus.OK.value

    def is_expired(self, now=None) -> bool:
        if self.expiry_date is None:
            return False
        return self.expiry_date <= (now or utcnow())

    def __repr__(self) -> str:
        return f"<Item id={self.id} sku={self.sku!r} quantity={self.quantity}>"

    def summary(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "quantity": self.quantity,
            "stock_status": self.stock_status,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "location": self.location,
            "quantity": self.quantity,
            "min_stock": self.min_stock,
            "max_stock": self.max_stock,
            "stock_status": self.stock_status,
            "is_protective_equipment": self.is_protective_equipment,
            "expiry_date": to_utc_z(self.expiry_date),
            "is_expired": self.is_expired(),
            "next_inspection_date": to_utc_z(self.next_inspection_date),
            "requires_maintenance": self.requires_maintenance,
            "next_maintenance_date": to_utc_z(self.next_maintenance_date),
            "unit_cost_cents": self.unit_cost_cents,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


# SKU uniqueness ignores case, matching item_service.get_item_by_sku
db.Index("uq_items_sku_lower", db.func.lower(Item.__table__.c.sku), unique=True)


class Movement(db.Model):
    """
    Ledger entry. Append-only: never updated, never deleted.

    For any item, the signed sum of its movements (CHECKIN adds, CHECKOUT
    subtracts) equals Item.quantity at every commit point.
    """
    __tablename__ = "movements"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_movements_quantity_positive"),
        db.CheckConstraint("type IN ('CHECKOUT', 'CHECKIN')", name="ck_movements_type"),
        db.Index("ix_movements_item_occurred", "item_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    item_id = db.Column(
        db.Integer,
        db.ForeignKey("items.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    operator_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    recipient_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    type = db.Column(db.String(16), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)

    # Business time, server-assigned, non-decreasing per item
    occurred_at = db.Column(db.DateTime, nullable=False, index=True)
    expected_return_date = db.Column(db.DateTime, nullable=True)
    note = db.Column(db.String(1000), nullable=True)
    digital_signature = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    # passive_deletes="all": the ORM never nulls item_id; the FK refuses the delete
    item = db.relationship(
        "Item",
        backref=db.backref("movements", lazy="dynamic", passive_deletes="all"),
    )
    operator = db.relationship("User", foreign_keys=[operator_id])
    recipient = db.relationship("User", foreign_keys=[recipient_id])

    @property
    def signed_quantity(self) -> int:
        if self.type == MovementType.CHECKOUT.value:
            return -self.quantity
        return self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_id": self.item_id,
            "item": self.item.summary() if self.item else None,
            "operator_id": self.operator_id,
            "operator_name": self.operator.full_name if self.operator else None,
            "recipient_id": self.recipient_id,
            "recipient_name": self.recipient.full_name if self.recipient else None,
            "type": self.type,
            "quantity": self.quantity,
            "occurred_at": to_utc_z(self.occurred_at),
            "expected_return_date": to_utc_z(self.expected_return_date),
            "note": self.note,
            "digital_signature": self.digital_signature,
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(Movement, "before_update")
def _refuse_movement_update(mapper, connection, target):
    session = object_session(target)
    if session is not None and session.is_modified(target, include_collections=False):
        raise ImmutableLedgerError(f"Movement {target.id} is immutable")


@event.listens_for(Movement, "before_delete")
def _refuse_movement_delete(mapper, connection, target):
    raise ImmutableLedgerError(f"Movement {target.id} cannot be deleted")
