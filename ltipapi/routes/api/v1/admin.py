"""ADMIN ROUTES"""

import logging

from flask import jsonify, request
from flask_jwt_extended import current_user, jwt_required

from ltipapi.api_decorators import admin_required
from ltipapi.routes.api.v1 import auth_endpoints, error
from ltipapi.services import AuditService, AuthService, get_account_lockout_service
from ltipapi.validators import validate_unlock_request

logger = logging.getLogger()


@auth_endpoints.route("/admin/unlock", strict_slashes=False, methods=["POST"])
@jwt_required()
@admin_required
@validate_unlock_request
def unlock_account():
    """
    Clear the lockout state of an account.

    **Access**: ADMIN only

    **Request Schema**: `{"email": str}`

    **Error Responses**:
    - `403 Forbidden`: Caller is not an administrator
    - `503 Service Unavailable`: Lockout store unreachable
    """
    email = request.get_json(silent=True)["email"]
    logger.info(f"[ROUTER]: Admin {current_user.email} unlocking {email}")
    unlocked = AuthService.unlock_account(email, current_user.email)
    if unlocked is None:
        return error(status=500, detail="Generic Error", kind="internal")
    if not unlocked:
        return error(
            status=503,
            detail="Lockout service unavailable",
            kind="service_unavailable",
        )
    AuditService.record(
        "ADMIN_ACTION",
        account_id=current_user.id,
        email=current_user.email,
        metadata={"action": "unlock", "target": email},
    )
    return jsonify(data={"email": email, "unlocked": True}), 200


@auth_endpoints.route("/admin/lockout-stats", strict_slashes=False, methods=["GET"])
@jwt_required()
@admin_required
def lockout_stats():
    return jsonify(data=get_account_lockout_service().get_stats()), 200
