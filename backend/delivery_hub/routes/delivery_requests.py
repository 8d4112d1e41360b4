# backend/delivery_hub/routes/delivery_requests.py
"""
Delivery request API routes, including processing claims.

Service errors (DeliveryHubError) are turned into JSON responses by the
handler registered in create_app(); routes only parse input.
"""
from flask import Blueprint, request, jsonify, g

from ..decorators import require_auth, require_operation
from ..services import processing_service, request_service
from ..services.query_filters import build_date_window
from ..validation import json_object, parse_date, parse_flag, parse_id


delivery_requests_bp = Blueprint("delivery_requests", __name__, url_prefix="/api/delivery-requests")


@delivery_requests_bp.get("")
@require_auth
@require_operation("request.view")
def list_requests():
    """
    Query params:
        branch_id: int (admin/warehouse only; branch users always get their own)
        ongoing: true -> pending/approved/processing only
        include_archived: true -> include archived requests
    """
    requests_ = request_service.list_requests(
        g.caller,
        branch_id=parse_id(request.args.get("branch_id"), "branch_id"),
        ongoing=parse_flag(request.args.get("ongoing")),
        include_archived=parse_flag(request.args.get("include_archived")),
    )
    return jsonify(requests_), 200


@delivery_requests_bp.get("/archive")
@require_auth
@require_operation("request.view")
def list_archived_requests():
    """
    Query params:
        branch_id: int
        date_range: today | last_7_days | last_30_days | last_90_days
        start_date, end_date: YYYY-MM-DD (inclusive, used when no date_range)
    """
    window = build_date_window(
        request.args.get("date_range"),
        parse_date(request.args.get("start_date"), "start_date"),
        parse_date(request.args.get("end_date"), "end_date"),
    )
    requests_ = request_service.list_archived_requests(
        g.caller,
        branch_id=parse_id(request.args.get("branch_id"), "branch_id"),
        window=window,
    )
    return jsonify(requests_), 200


@delivery_requests_bp.get("/<id:request_id>")
@require_auth
@require_operation("request.view")
def get_request(request_id: int):
    return jsonify(request_service.get_request(request_id, g.caller)), 200


@delivery_requests_bp.post("")
@require_auth
@require_operation("request.create")
def create_request():
    """
    Create a delivery request for the caller's branch.

    Request body:
    {
        "items": [{"description", "unit", "quantity", "unit_price", "item_code"?, "subtotal"?}],
        "delivery_date": "YYYY-MM-DD" (optional),
        "priority": "low" | "medium" | "high" (optional),
        "notes": str (optional),
        "total_amount": number (optional, defaults to the sum of subtotals)
    }

    Returns:
        201: Request created with items
        400: Invalid input
        403: Caller is not a branch user
    """
    data = json_object(request.get_json(silent=True))
    created = request_service.create_request(
        g.caller,
        items=data.get("items"),
        delivery_date=data.get("delivery_date", data.get("deliveryDate")),
        priority=data.get("priority"),
        notes=data.get("notes"),
        total_amount=data.get("total_amount", data.get("totalAmount")),
    )
    return jsonify(created), 201


@delivery_requests_bp.put("/<id:request_id>/status")
@require_auth
@require_operation("request.update_status")
def update_request_status(request_id: int):
    """
    Approve or reject a pending request.

    Request body:
    {
        "status": "approved" | "rejected",
        "reason": str (required when rejecting)
    }

    Returns:
        200: Updated request
        409: Someone else already processed it (body names them)
        422: Pending request asked to skip review
    """
    data = json_object(request.get_json(silent=True))
    updated = request_service.update_request_status(
        request_id,
        data.get("status"),
        g.caller,
        reason=data.get("reason"),
    )
    return jsonify(updated), 200


@delivery_requests_bp.delete("/<id:request_id>")
@require_auth
@require_operation("request.delete")
def delete_request(request_id: int):
    request_service.delete_request(request_id, g.caller)
    return jsonify({"message": "Delivery request deleted successfully"}), 200


@delivery_requests_bp.post("/<id:request_id>/archive")
@require_auth
@require_operation("request.archive")
def archive_request(request_id: int):
    return jsonify(request_service.archive_request(request_id, g.caller)), 200


# -- Processing claims --

@delivery_requests_bp.get("/<id:request_id>/processing-status")
@require_auth
@require_operation("processing.view")
def processing_status(request_id: int):
    return jsonify(processing_service.get_processing_status(request_id, g.caller)), 200


@delivery_requests_bp.post("/<id:request_id>/mark-processing")
@require_auth
@require_operation("processing.claim")
def mark_processing(request_id: int):
    return jsonify(processing_service.claim_request(request_id, g.caller)), 200


@delivery_requests_bp.post("/<id:request_id>/unmark-processing")
@require_auth
@require_operation("processing.release")
def unmark_processing(request_id: int):
    return jsonify(processing_service.release_request(request_id, g.caller)), 200
