# Overview: Flask API routes for user accounts (admin only).

from flask import Blueprint, jsonify, request

from ..decorators import require_auth, require_operation
from ..services import auth_service
from ..validation import json_object, parse_id


users_bp = Blueprint("users", __name__, url_prefix="/api/users")


@users_bp.get("")
@require_auth
@require_operation("user.manage")
def list_users():
    users = auth_service.list_users(
        role=request.args.get("role"),
        branch_id=parse_id(request.args.get("branch_id"), "branch_id"),
    )
    return jsonify([u.to_dict() for u in users]), 200


@users_bp.post("")
@require_auth
@require_operation("user.manage")
def create_user():
    """
    Request body:
    {
        "username": str,
        "password": str,
        "role": "admin" | "warehouse" | "branch",
        "branch_id": int (required for branch users),
        "full_name": str (optional),
        "email": str (optional)
    }
    """
    data = json_object(request.get_json(silent=True))
    username = (data.get("username") or "").strip()
    password = data.get("password") or ""
    if not username or not password:
        return jsonify({"error": "username and password required"}), 400

    user = auth_service.create_user(
        username=username,
        password=password,
        role=data.get("role"),
        branch_id=parse_id(data.get("branch_id"), "branch_id"),
        full_name=data.get("full_name"),
        email=data.get("email"),
    )
    return jsonify(user.to_dict()), 201
