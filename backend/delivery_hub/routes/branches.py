# Overview: Flask API routes for branches; parses input and returns JSON responses.

from flask import Blueprint, jsonify, g

from ..decorators import require_auth, require_operation
from ..services import branch_service


branches_bp = Blueprint("branches", __name__, url_prefix="/api/branches")


@branches_bp.get("")
@require_auth
@require_operation("branch.view")
def list_branches():
    return jsonify(branch_service.list_branches(g.caller)), 200


@branches_bp.get("/<id:branch_id>")
@require_auth
@require_operation("branch.view")
def get_branch(branch_id: int):
    return jsonify(branch_service.get_branch(branch_id, g.caller)), 200
