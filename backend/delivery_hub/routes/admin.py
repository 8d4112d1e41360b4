# Overview: Flask API routes for admin operations; parses input and returns JSON responses.

# backend/delivery_hub/routes/admin.py
"""
Admin routes.

Provides endpoints for:
- Clearing the archive (password re-confirmation required)
- Inspecting and force-releasing processing claims
- Listing the operation catalogue

All endpoints require an authenticated admin.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_operation
from ..permissions import (
    OperationCategory,
    get_all_operation_codes,
    get_operation_definition,
    get_operations_by_category,
)
from ..services import archive_service, auth_service, processing_service
from ..validation import json_object

admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


@admin_bp.delete("/clear-archive")
@require_auth
@require_operation("archive.clear")
def clear_archive():
    """
    Permanently delete archived requests and deliveries.

    Request body:
    {
        "password": str  (the admin's own password)
    }

    Returns:
        200: {"message", "deletedCount": {"delivery_requests", "deliveries", "total"}}
        400: Password missing
        401: Password wrong
    """
    data = json_object(request.get_json(silent=True))
    password = data.get("password")
    if not password:
        return jsonify({"error": "Password is required"}), 400

    if not auth_service.verify_password(password, g.current_user.password_hash):
        current_app.logger.warning(
            "Archive clear refused for user %s: password confirmation failed", g.current_user.id
        )
        return jsonify({"error": "Invalid password"}), 401

    counts = archive_service.clear_archive(g.caller)
    return jsonify({
        "message": "Archive cleared successfully",
        "deletedCount": counts,
    }), 200


# =============================================================================
# PROCESSING CLAIMS
# =============================================================================

@admin_bp.get("/processing-claims")
@require_auth
@require_operation("processing.manage")
def list_processing_claims():
    claims = processing_service.list_claims(g.caller)
    return jsonify({"claims": claims, "count": len(claims)}), 200


@admin_bp.delete("/processing-claims/<id:request_id>")
@require_auth
@require_operation("processing.manage")
def force_release_claim(request_id: int):
    removed = processing_service.force_release(request_id, g.caller)
    return jsonify({"message": "Processing claim released", "released": removed}), 200


# =============================================================================
# OPERATION CATALOGUE
# =============================================================================

@admin_bp.get("/operations")
@require_auth
@require_operation("user.manage")
def list_operations():
    """
    List the operation catalogue with the roles allowed to run each one.

    Query params:
        category: Optional category filter (REQUESTS, PROCESSING, ...)

    Returns:
        200: {"operations": [{code, name, description, category, roles}], "count"}
        400: Unknown category
    """
    category = request.args.get("category")
    if category:
        category = category.upper()
        if category not in OperationCategory.ALL:
            return jsonify({"error": f"Unknown category: {category}"}), 400
        codes = [op[0] for op in get_operations_by_category(category)]
    else:
        codes = get_all_operation_codes()

    operations = [get_operation_definition(code) for code in codes]
    return jsonify({"operations": operations, "count": len(operations)}), 200
