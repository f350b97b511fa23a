# Overview: Request and role decorators for API routes.

from functools import wraps
from flask import request, jsonify, g, current_app

from .extensions import db
from .models import User, UserRole
from .services import token_service
from .validation import AuthenticationError


def require_auth(f):
    """
    Require a valid bearer access token.

    Sets g.current_user (the User row, re-read so deactivation takes effect
    immediately) and g.token_claims.

    SECURITY: Returns 401 if:
    - No Authorization header
    - Bad signature, wrong issuer/audience, or expired token
    - User missing or deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1].strip()

        try:
            claims = token_service.decode_access_token(token)
        except AuthenticationError as e:
            return jsonify({"error": str(e)}), 401

        user = db.session.get(User, int(claims["sub"]))
        if user is None or not user.is_active:
            return jsonify({"error": token_service.INVALID_ACCESS_MESSAGE}), 401

        g.current_user = user
        g.token_claims = claims

        return f(*args, **kwargs)

    return decorated_function


def require_roles(*roles):
    """
    Require one of the given roles. ADMIN passes every gate.

    Must be stacked under @require_auth.
    """
    allowed = {UserRole(r).value for r in roles}

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            user = getattr(g, "current_user", None)
            if user is None:
                return jsonify({"error": "Authentication required"}), 401

            if user.role == UserRole.ADMIN.value or user.role in allowed:
                return f(*args, **kwargs)

            current_app.logger.warning(
                "Access denied: user %s (%s) on %s %s", user.id, user.role, request.method, request.path
            )
            return jsonify({
                "error": "Permission denied",
                "required_roles": sorted(allowed),
            }), 403

        return decorated_function
    return decorator
