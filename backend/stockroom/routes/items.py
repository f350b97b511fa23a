# Overview: Flask API routes for the item catalogue; parses input and returns JSON responses.

# backend/stockroom/routes/items.py
"""
Item catalogue routes.

SECURITY: All routes require authentication.
- Read operations: any authenticated user
- Write operations: WAREHOUSE_MANAGER or HR

quantity is not writable here. Stock only changes through /api/movements
(and the opening balance given as initial_quantity on create).
"""
from flask import Blueprint, request, jsonify, current_app, g

from ..models import Item, UserRole
from ..services import item_service, movement_service
from ..services.query_service import QueryParameters
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_item,
    ValidationError,
    ConflictError,
    NotFoundError,
    json_object,
)
from ..decorators import require_auth, require_roles

ITEM_CREATE_POLICY = ModelValidationPolicy(
    writable_fields=item_service.ITEM_MUTABLE_FIELDS | {"sku"},
    required_on_create={"sku", "name"},
)
ITEM_UPDATE_POLICY = ModelValidationPolicy(writable_fields=set(item_service.ITEM_MUTABLE_FIELDS))

items_bp = Blueprint("items", __name__, url_prefix="/api/items")


@items_bp.get("")
@require_auth
def list_items_route():
    params = QueryParameters.from_args(request.args)
    return jsonify(item_service.list_items(params)), 200


@items_bp.get("/<int:item_id>")
@require_auth
def get_item_route(item_id: int):
    try:
        item = item_service.get_item(item_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    return jsonify(item.to_dict()), 200


@items_bp.post("")
@require_auth
@require_roles(UserRole.WAREHOUSE_MANAGER, UserRole.HR)
def create_item_route():
    """
    Create an item. Optional initial_quantity is booked as an opening CHECKIN
    by the caller.
    """
    payload = dict(json_object(request.get_json(silent=True)))
    initial_quantity = payload.pop("initial_quantity", 0)

    try:
        patch = validate_payload(model=Item, payload=payload, policy=ITEM_CREATE_POLICY, partial=False)
        enforce_rules_item(patch)
        item = item_service.create_item(
            patch=patch,
            initial_quantity=initial_quantity,
            operator_id=g.current_user.id,
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to create item")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(item.to_dict()), 201


@items_bp.put("/<int:item_id>")
@require_auth
@require_roles(UserRole.WAREHOUSE_MANAGER, UserRole.HR)
def update_item_route(item_id: int):
    payload = json_object(request.get_json(silent=True))
    if isinstance(payload, dict) and ("sku" in payload or "quantity" in payload):
        return jsonify({"error": "sku and quantity cannot be changed through this endpoint"}), 400

    try:
        patch = validate_payload(model=Item, payload=payload, policy=ITEM_UPDATE_POLICY, partial=True)
        enforce_rules_item(patch)
        item = item_service.update_item(item_id=item_id, patch=patch, actor_user_id=g.current_user.id)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to update item")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(item.to_dict()), 200


@items_bp.delete("/<int:item_id>")
@require_auth
@require_roles(UserRole.WAREHOUSE_MANAGER, UserRole.HR)
def delete_item_route(item_id: int):
    try:
        item_service.delete_item(item_id=item_id, actor_user_id=g.current_user.id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to delete item")
        return jsonify({"error": "Internal server error"}), 500

    return "", 204


@items_bp.get("/<int:item_id>/ledger-check")
@require_auth
def item_ledger_check_route(item_id: int):
    try:
        result = movement_service.check_item_ledger(item_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    return jsonify(result), 200
