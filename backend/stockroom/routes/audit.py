# Overview: Read-only audit log listing for HR.

from flask import Blueprint, request, jsonify

from ..models import UserRole
from ..services import audit_service
from ..services.query_service import QueryParameters
from ..decorators import require_auth, require_roles


audit_bp = Blueprint("audit", __name__, url_prefix="/api/audit")


@audit_bp.get("")
@require_auth
@require_roles(UserRole.HR)
def list_audit_route():
    params = QueryParameters.from_args(request.args)
    return jsonify(audit_service.list_audit_logs(params)), 200
