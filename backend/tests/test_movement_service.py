"""
Movement service tests.

Verifies:
- checkout/check-in scenario keeps item quantity equal to the ledger replay
- failures leave neither a stock change nor a ledger entry behind
- protective equipment needs recipient + signature before any mutation
- ledger entries are immutable
- occurred_at never goes backwards for an item
"""

import random
from datetime import datetime

import pytest

from stockroom.extensions import db
from stockroom.models import AuditLog, AuditAction, Item, Movement, MovementType, StockStatus, ImmutableLedgerError
from stockroom.services import audit_service, movement_service
from stockroom.validation import InsufficientStockError, NotFoundError, ValidationError


def _movements(item_id):
    return (
        db.session.query(Movement)
        .filter_by(item_id=item_id)
        .order_by(Movement.id.asc())
        .all()
    )


def _quantity(item_id):
    db.session.expire_all()
    return db.session.get(Item, item_id).quantity


class TestCheckoutCheckinScenario:

    def test_opening_balance_is_a_ledger_entry(self, item):
        entries = _movements(item.id)
        assert [(m.type, m.quantity) for m in entries] == [("CHECKIN", 10)]
        assert _quantity(item.id) == 10

    def test_ten_minus_four_plus_two_then_nine_fails(self, item, manager):
        movement_service.register_checkout(item_id=item.id, operator_id=manager.id, quantity=4)
        assert _quantity(item.id) == 6
        checkouts = [m for m in _movements(item.id) if m.type == MovementType.CHECKOUT.value]
        assert [(m.type, m.quantity) for m in checkouts] == [("CHECKOUT", 4)]

        movement_service.register_checkin(item_id=item.id, operator_id=manager.id, quantity=2)
        assert _quantity(item.id) == 8
        assert [(m.type, m.quantity) for m in _movements(item.id)[1:]] == [("CHECKOUT", 4), ("CHECKIN", 2)]

        with pytest.raises(InsufficientStockError):
            movement_service.register_checkout(item_id=item.id, operator_id=manager.id, quantity=9)
        assert _quantity(item.id) == 8
        assert len(_movements(item.id)) == 3

    def test_replay_matches_quantity_after_mixed_sequence(self, item, manager):
        ops = [("out", 3), ("in", 5), ("out", 10), ("in", 1), ("out", 2), ("out", 1)]
        for kind, qty in ops:
            if kind == "out":
                movement_service.register_checkout(item_id=item.id, operator_id=manager.id, quantity=qty)
            else:
                movement_service.register_checkin(item_id=item.id, operator_id=manager.id, quantity=qty)

        assert _quantity(item.id) == 0
        assert movement_service.replay_item_quantity(item.id) == 0
        assert movement_service.verify_ledger() == []

    @pytest.mark.parametrize("seed", [1, 7, 42, 2026])
    def test_replay_matches_quantity_after_every_step_of_random_sequence(self, item, manager, seed):
        rng = random.Random(seed)
        expected = 10
        booked = 1

        for _ in range(40):
            kind = rng.choice(["out", "out", "in"])
            qty = rng.choice([0, -2, 1, 2, 3, 5, 8, 13])
            if kind == "out":
                if qty <= 0 or qty > expected:
                    with pytest.raises(ValidationError):
                        movement_service.register_checkout(item_id=item.id, operator_id=manager.id, quantity=qty)
                else:
                    movement_service.register_checkout(item_id=item.id, operator_id=manager.id, quantity=qty)
                    expected -= qty
                    booked += 1
            else:
                if qty <= 0:
                    with pytest.raises(ValidationError):
                        movement_service.register_checkin(item_id=item.id, operator_id=manager.id, quantity=qty)
                else:
                    movement_service.register_checkin(item_id=item.id, operator_id=manager.id, quantity=qty)
                    expected += qty
                    booked += 1

            assert _quantity(item.id) == expected
            assert movement_service.replay_item_quantity(item.id) == expected
            assert len(_movements(item.id)) == booked

    def test_checkout_of_entire_stock_then_one_more(self, item, manager):
        movement_service.register_checkout(item_id=item.id, operator_id=manager.id, quantity=10)
        assert _quantity(item.id) == 0
        with pytest.raises(InsufficientStockError):
            movement_service.register_checkout(item_id=item.id, operator_id=manager.id, quantity=1)
        assert _quantity(item.id) == 0

    def test_checkin_above_max_stock_is_accepted_with_warning_status(self, item, manager):
        movement = movement_service.register_checkin(item_id=item.id, operator_id=manager.id, quantity=50)
        assert movement.item.quantity == 60
        assert movement.to_dict()["item"]["stock_status"] == StockStatus.ABOVE_MAXIMUM.value

    def test_checkout_returns_ledger_entry_view(self, item, manager, employee):
        movement = movement_service.register_checkout(
            item_id=item.id,
            operator_id=manager.id,
            quantity="3",
            recipient_id=employee.id,
            expected_return_date="2026-04-01T00:00:00Z",
            note="  Night shift  ",
        )
        view = movement.to_dict()
        assert view["type"] == "CHECKOUT"
        assert view["quantity"] == 3
        assert view["operator_id"] == manager.id
        assert view["recipient_name"] == employee.full_name
        assert view["expected_return_date"] == "2026-04-01T00:00:00Z"
        assert view["note"] == "Night shift"


class TestValidation:

    @pytest.mark.parametrize("quantity", [0, -1, "abc", 1.5, "2.0", "1e3", True, None])
    def test_bad_quantity_rejected(self, item, manager, quantity):
        with pytest.raises(ValidationError):
            movement_service.register_checkout(item_id=item.id, operator_id=manager.id, quantity=quantity)
        with pytest.raises(ValidationError):
            movement_service.register_checkin(item_id=item.id, operator_id=manager.id, quantity=quantity)
        assert _quantity(item.id) == 10

    def test_missing_item_is_not_found(self, manager):
        with pytest.raises(NotFoundError):
            movement_service.register_checkout(item_id=9999, operator_id=manager.id, quantity=1)

    def test_missing_operator_is_not_found(self, item):
        with pytest.raises(NotFoundError):
            movement_service.register_checkout(item_id=item.id, operator_id=9999, quantity=1)
        assert _quantity(item.id) == 10

    def test_missing_recipient_is_not_found(self, item, manager):
        with pytest.raises(NotFoundError):
            movement_service.register_checkout(
                item_id=item.id, operator_id=manager.id, quantity=1, recipient_id=9999
            )
        assert len(_movements(item.id)) == 1

    def test_bad_expected_return_date(self, item, manager):
        with pytest.raises(ValidationError):
            movement_service.register_checkout(
                item_id=item.id, operator_id=manager.id, quantity=1, expected_return_date="next week"
            )


class TestProtectiveEquipment:

    def test_checkout_without_recipient_and_signature_fails_before_mutation(self, ppe_item, manager):
        with pytest.raises(ValidationError):
            movement_service.register_checkout(item_id=ppe_item.id, operator_id=manager.id, quantity=1)
        assert _quantity(ppe_item.id) == 20
        assert len(_movements(ppe_item.id)) == 1

    def test_checkout_without_signature_fails(self, ppe_item, manager, employee):
        with pytest.raises(ValidationError):
            movement_service.register_checkout(
                item_id=ppe_item.id, operator_id=manager.id, quantity=1,
                recipient_id=employee.id, digital_signature="   ",
            )
        assert _quantity(ppe_item.id) == 20

    def test_checkout_without_recipient_fails(self, ppe_item, manager):
        with pytest.raises(ValidationError):
            movement_service.register_checkout(
                item_id=ppe_item.id, operator_id=manager.id, quantity=1, digital_signature="data:image/png;base64,AAA",
            )
        assert _quantity(ppe_item.id) == 20

    def test_checkout_with_recipient_and_signature(self, ppe_item, manager, employee):
        movement = movement_service.register_checkout(
            item_id=ppe_item.id, operator_id=manager.id, quantity=2,
            recipient_id=employee.id, digital_signature="data:image/png;base64,AAA",
        )
        assert movement.recipient_id == employee.id
        assert movement.digital_signature == "data:image/png;base64,AAA"
        assert _quantity(ppe_item.id) == 18


class TestAtomicity:

    def test_failure_after_mutation_rolls_back_stock_and_ledger(self, item, manager, monkeypatch):
        def boom(**kwargs):
            raise RuntimeError("audit store down")

        monkeypatch.setattr(movement_service.audit_service, "record_audit", boom)
        with pytest.raises(RuntimeError):
            movement_service.register_checkout(item_id=item.id, operator_id=manager.id, quantity=4)

        assert _quantity(item.id) == 10
        assert len(_movements(item.id)) == 1

    def test_audit_failure_does_not_fail_checkout(self, item, manager, monkeypatch):
        def broken(details):
            raise TypeError("cannot serialize")

        monkeypatch.setattr(audit_service, "_serialize_details", broken)
        movement_service.register_checkout(item_id=item.id, operator_id=manager.id, quantity=4)

        assert _quantity(item.id) == 6
        assert db.session.query(AuditLog).filter_by(action=AuditAction.CHECKOUT.value).count() == 0

    def test_checkout_writes_audit_entry_in_same_commit(self, item, manager):
        movement = movement_service.register_checkout(item_id=item.id, operator_id=manager.id, quantity=1)
        entry = db.session.query(AuditLog).filter_by(action=AuditAction.CHECKOUT.value).one()
        assert entry.entity_name == "Movement"
        assert entry.entity_id == movement.id
        assert entry.actor_user_id == manager.id


class TestLedgerImmutability:

    def test_update_is_refused(self, item):
        movement = _movements(item.id)[0]
        movement.quantity = 99
        with pytest.raises(ImmutableLedgerError):
            db.session.commit()
        db.session.rollback()
        assert _movements(item.id)[0].quantity == 10

    def test_delete_is_refused(self, item):
        movement = _movements(item.id)[0]
        db.session.delete(movement)
        with pytest.raises(ImmutableLedgerError):
            db.session.commit()
        db.session.rollback()
        assert len(_movements(item.id)) == 1


class TestOrderingAndQueries:

    def test_occurred_at_never_goes_backwards(self, item, manager, clock):
        clock.now = datetime(2026, 5, 1, 12, 0, 0)
        first = movement_service.register_checkout(item_id=item.id, operator_id=manager.id, quantity=1)
        first_at = first.occurred_at

        clock.now = datetime(2026, 5, 1, 11, 0, 0)
        second = movement_service.register_checkout(item_id=item.id, operator_id=manager.id, quantity=1)
        assert second.occurred_at >= first_at

    def test_history_queries_are_newest_first(self, item, manager, employee, clock):
        movement_service.register_checkout(item_id=item.id, operator_id=manager.id, quantity=1, recipient_id=employee.id)
        clock.advance(minutes=1)
        movement_service.register_checkin(item_id=item.id, operator_id=manager.id, quantity=1)
        clock.advance(minutes=1)
        last = movement_service.register_checkout(item_id=item.id, operator_id=manager.id, quantity=2, recipient_id=employee.id)

        by_item = movement_service.movements_for_item(item.id)
        assert by_item[0].id == last.id
        assert [m.type for m in by_item] == ["CHECKOUT", "CHECKIN", "CHECKOUT", "CHECKIN"]

        by_recipient = movement_service.movements_for_recipient(employee.id)
        assert [m.quantity for m in by_recipient] == [2, 1]

        by_operator = movement_service.movements_by_operator(manager.id)
        assert len(by_operator) == 4

    def test_history_for_missing_entities(self, db_session):
        with pytest.raises(NotFoundError):
            movement_service.movements_for_item(12345)
        with pytest.raises(NotFoundError):
            movement_service.movements_for_recipient(12345)

    def test_get_movement(self, item):
        movement = _movements(item.id)[0]
        assert movement_service.get_movement(movement.id).id == movement.id
        with pytest.raises(NotFoundError):
            movement_service.get_movement(9999)

    def test_check_item_ledger(self, item, manager):
        movement_service.register_checkout(item_id=item.id, operator_id=manager.id, quantity=7)
        result = movement_service.check_item_ledger(item.id)
        assert result == {
            "item_id": item.id,
            "sku": "GLV-001",
            "quantity": 3,
            "ledger_quantity": 3,
            "consistent": True,
        }
