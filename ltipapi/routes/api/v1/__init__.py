from flask import Blueprint, jsonify

# GENERIC Error


def error(status=400, detail="Bad Request", kind="bad_request"):
    return jsonify({"error": kind, "message": detail}), status


auth_endpoints = Blueprint("auth_endpoints", __name__)
import ltipapi.routes.api.v1.auth  # noqa: E402, F401
import ltipapi.routes.api.v1.admin  # noqa: E402, F401
