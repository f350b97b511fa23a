# Overview: Flask API routes for staff accounts and the caller's own profile.

"""
User routes.

- POST /api/users                         HR: register a person
- GET  /api/users, /api/users/<id>        HR
- PUT  /api/users/<id>/active             HR: activate / deactivate
- GET/PUT /api/users/me                   any authenticated user
- POST /api/users/me/change-password      204; 400 when the current password is wrong
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..models import UserRole
from ..services import user_service, auth_service
from ..services.query_service import QueryParameters
from ..validation import ValidationError, ConflictError, NotFoundError, json_object
from ..decorators import require_auth, require_roles


users_bp = Blueprint("users", __name__, url_prefix="/api/users")


@users_bp.post("")
@require_auth
@require_roles(UserRole.HR)
def register_user_route():
    data = json_object(request.get_json(silent=True))
    try:
        user = user_service.register_user(
            full_name=data.get("full_name"),
            email=data.get("email"),
            password=data.get("password"),
            role=data.get("role") or UserRole.EMPLOYEE.value,
            cost_center=data.get("cost_center"),
            actor_user_id=g.current_user.id,
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to register user")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(user.to_dict()), 201


@users_bp.get("")
@require_auth
@require_roles(UserRole.HR)
def list_users_route():
    params = QueryParameters.from_args(request.args)
    return jsonify(user_service.list_users(params)), 200


@users_bp.get("/<int:user_id>")
@require_auth
@require_roles(UserRole.HR)
def get_user_route(user_id: int):
    try:
        user = user_service.get_user(user_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    return jsonify(user.to_dict()), 200


@users_bp.put("/<int:user_id>/active")
@require_auth
@require_roles(UserRole.HR)
def set_user_active_route(user_id: int):
    data = json_object(request.get_json(silent=True))
    is_active = data.get("is_active")
    if not isinstance(is_active, bool):
        return jsonify({"error": "is_active must be a boolean"}), 400
    try:
        user = user_service.set_active(user_id=user_id, is_active=is_active, actor_user_id=g.current_user.id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    return jsonify(user.to_dict()), 200


@users_bp.get("/me")
@require_auth
def get_me_route():
    return jsonify(g.current_user.to_dict()), 200


@users_bp.put("/me")
@require_auth
def update_me_route():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"error": "Invalid JSON payload"}), 400
    try:
        user = user_service.update_profile(user_id=g.current_user.id, patch=data)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to update profile")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(user.to_dict()), 200


@users_bp.post("/me/change-password")
@require_auth
def change_password_route():
    """Requires the current password even though the caller is authenticated."""
    data = json_object(request.get_json(silent=True))
    try:
        auth_service.change_password(
            user_id=g.current_user.id,
            current_password=data.get("current_password"),
            new_password=data.get("new_password"),
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to change password")
        return jsonify({"error": "Internal server error"}), 500

    return "", 204
