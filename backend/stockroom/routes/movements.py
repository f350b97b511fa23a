# Overview: Flask API routes for stock checkout/check-in and the movement ledger.

"""
Movement routes. All require WAREHOUSE_MANAGER (ADMIN passes).

- POST /api/movements/checkout   201 + ledger entry; 400 validation/insufficient stock; 404 item/user
- POST /api/movements/checkin    same contract, no stock ceiling
- GET  /api/movements            paged ledger (pageNumber, pageSize, searchTerm, sortBy, sortOrder)
- GET  /api/movements/<id>
- GET  /api/movements/item/<id>, /operator/<id>, /recipient/<id>   newest first
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..models import UserRole
from ..services import movement_service
from ..services.query_service import QueryParameters
from ..validation import ValidationError, NotFoundError
from ..decorators import require_auth, require_roles


movements_bp = Blueprint("movements", __name__, url_prefix="/api/movements")

CHECKOUT_FIELDS = {
    "item_id", "operator_id", "quantity", "recipient_id",
    "expected_return_date", "digital_signature", "signature", "note",
}
CHECKIN_FIELDS = {"item_id", "operator_id", "quantity", "recipient_id", "note"}


def _parse_body(allowed: set[str]) -> dict:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    unknown = sorted(k for k in payload if k not in allowed)
    if unknown:
        raise ValidationError(f"Field not allowed: {unknown[0]}")
    for key in ("item_id", "operator_id", "recipient_id"):
        value = payload.get(key)
        if value is not None and (isinstance(value, bool) or not isinstance(value, int)):
            raise ValidationError(f"{key} must be an integer id")
    if payload.get("item_id") is None:
        raise ValidationError("item_id is required")
    return payload


@movements_bp.post("/checkout")
@require_auth
@require_roles(UserRole.WAREHOUSE_MANAGER)
def checkout_route():
    try:
        payload = _parse_body(CHECKOUT_FIELDS)
        movement = movement_service.register_checkout(
            item_id=payload["item_id"],
            operator_id=payload.get("operator_id") or g.current_user.id,
            quantity=payload.get("quantity"),
            recipient_id=payload.get("recipient_id"),
            expected_return_date=payload.get("expected_return_date"),
            digital_signature=payload.get("digital_signature") or payload.get("signature"),
            note=payload.get("note"),
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to register checkout")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(movement.to_dict()), 201


@movements_bp.post("/checkin")
@require_auth
@require_roles(UserRole.WAREHOUSE_MANAGER)
def checkin_route():
    try:
        payload = _parse_body(CHECKIN_FIELDS)
        movement = movement_service.register_checkin(
            item_id=payload["item_id"],
            operator_id=payload.get("operator_id") or g.current_user.id,
            quantity=payload.get("quantity"),
            recipient_id=payload.get("recipient_id"),
            note=payload.get("note"),
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to register check-in")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(movement.to_dict()), 201


@movements_bp.get("")
@require_auth
@require_roles(UserRole.WAREHOUSE_MANAGER)
def list_movements_route():
    params = QueryParameters.from_args(request.args)
    return jsonify(movement_service.list_movements(params)), 200


@movements_bp.get("/<int:movement_id>")
@require_auth
@require_roles(UserRole.WAREHOUSE_MANAGER)
def get_movement_route(movement_id: int):
    try:
        movement = movement_service.get_movement(movement_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    return jsonify(movement.to_dict()), 200


def _list_response(fetch, entity_id: int):
    try:
        movements = fetch(entity_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    return jsonify({"items": [m.to_dict() for m in movements], "count": len(movements)}), 200


@movements_bp.get("/item/<int:item_id>")
@require_auth
@require_roles(UserRole.WAREHOUSE_MANAGER)
def movements_for_item_route(item_id: int):
    return _list_response(movement_service.movements_for_item, item_id)


@movements_bp.get("/operator/<int:user_id>")
@require_auth
@require_roles(UserRole.WAREHOUSE_MANAGER)
def movements_by_operator_route(user_id: int):
    return _list_response(movement_service.movements_by_operator, user_id)


@movements_bp.get("/recipient/<int:user_id>")
@require_auth
@require_roles(UserRole.WAREHOUSE_MANAGER)
def movements_for_recipient_route(user_id: int):
    return _list_response(movement_service.movements_for_recipient, user_id)
