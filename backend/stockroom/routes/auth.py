# Overview: Flask API routes for login, token refresh and logout.

# backend/stockroom/routes/auth.py
"""
Authentication API routes

- POST /api/auth/login     email + password -> access token + refresh token
- POST /api/auth/refresh   refresh token -> rotated pair
- POST /api/auth/logout    revokes the presented refresh token
- GET  /api/auth/me        the caller's profile

Every credential failure answers 401 with a generic message.
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..services import auth_service
from ..validation import AuthenticationError, json_object
from ..decorators import require_auth


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _refresh_token_from(data: dict):
    return data.get("refresh_token") or data.get("refreshToken")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate and issue a token pair.

    Missing, empty or non-string credentials get the same 401 as a wrong
    password.
    """
    data = json_object(request.get_json(silent=True))
    email = data.get("email")
    password = data.get("password")

    if not isinstance(email, str) or not isinstance(password, str) or not email or not password:
        return jsonify({"error": auth_service.INVALID_CREDENTIALS_MESSAGE}), 401

    try:
        result = auth_service.login(email, password)
    except AuthenticationError as e:
        return jsonify({"error": str(e)}), 401
    except Exception:
        current_app.logger.exception("Failed to login user")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(result.to_dict()), 200


@auth_bp.post("/refresh")
def refresh_route():
    """
    Rotate a refresh token.

    Unknown, expired, revoked and already-rotated tokens all answer the same 401.
    """
    data = json_object(request.get_json(silent=True))
    token = _refresh_token_from(data)
    if not token or not isinstance(token, str):
        return jsonify({"error": "Invalid or expired refresh token"}), 401

    try:
        result = auth_service.refresh(token)
    except AuthenticationError as e:
        return jsonify({"error": str(e)}), 401
    except Exception:
        current_app.logger.exception("Failed to refresh token")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(result.to_dict()), 200


@auth_bp.post("/logout")
@require_auth
def logout_route():
    data = json_object(request.get_json(silent=True))
    try:
        auth_service.logout(_refresh_token_from(data), actor_user_id=g.current_user.id)
    except Exception:
        current_app.logger.exception("Failed to logout user")
        return jsonify({"error": "Internal server error"}), 500
    return "", 204


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify({"user": g.current_user.to_dict()}), 200
