# backend/delivery_hub/routes/deliveries.py
"""
Delivery API routes.

DELETE archives (soft delete); rows are only removed by the admin
archive clear.
"""
from flask import Blueprint, request, jsonify, g

from ..decorators import require_auth, require_operation
from ..services import delivery_service
from ..services.delivery_service import DeliveryFilters
from ..services.query_filters import build_date_window
from ..validation import json_object, parse_date, parse_flag, parse_id


deliveries_bp = Blueprint("deliveries", __name__, url_prefix="/api/deliveries")


def _filters_from_args(args) -> DeliveryFilters:
    return DeliveryFilters(
        branch_id=parse_id(args.get("branch_id"), "branch_id"),
        ongoing=parse_flag(args.get("ongoing")),
        include_archived=parse_flag(args.get("include_archived")),
        archived_only=parse_flag(args.get("archived_only")),
        window=build_date_window(
            args.get("date_range"),
            parse_date(args.get("start_date"), "start_date"),
            parse_date(args.get("end_date"), "end_date"),
        ),
    )


@deliveries_bp.get("")
@require_auth
@require_operation("delivery.view")
def list_deliveries():
    """
    Query params:
        branch_id, ongoing, include_archived, archived_only,
        date_range (today | last_7_days | last_30_days | last_90_days),
        start_date / end_date (YYYY-MM-DD)
    """
    deliveries = delivery_service.list_deliveries(g.caller, _filters_from_args(request.args))
    return jsonify(deliveries), 200


@deliveries_bp.get("/<id:delivery_id>")
@require_auth
@require_operation("delivery.view")
def get_delivery(delivery_id: int):
    return jsonify(delivery_service.get_delivery(delivery_id, g.caller)), 200


@deliveries_bp.post("")
@require_auth
@require_operation("delivery.create")
def create_delivery():
    """
    Create a delivery, optionally from an approved request.

    Request body:
    {
        "recipient_name": str,
        "recipient_address": str,
        "recipient_phone": str (optional),
        "package_description": str (optional),
        "weight": number (optional),
        "delivery_date": "YYYY-MM-DD" (optional),
        "branch_id": int (optional; defaults to the request's branch),
        "request_id": int (optional)
    }

    Status is always pending; the tracking number is generated.

    Returns:
        201: Delivery created
        400: Missing recipient, unknown or already delivered request
        409: Tracking number or id collision
    """
    data = json_object(request.get_json(silent=True))
    created = delivery_service.create_delivery(data, g.caller)
    return jsonify(created), 201


@deliveries_bp.put("/<id:delivery_id>")
@require_auth
@require_operation("delivery.update")
def update_delivery(delivery_id: int):
    data = json_object(request.get_json(silent=True))
    return jsonify(delivery_service.update_delivery(delivery_id, data, g.caller)), 200


@deliveries_bp.put("/<id:delivery_id>/status")
@require_auth
@require_operation("delivery.update_status")
def update_delivery_status(delivery_id: int):
    """
    Request body:
    {
        "status": "preparing" | "loading" | "in_transit" | "delivered"
    }
    """
    data = json_object(request.get_json(silent=True))
    updated = delivery_service.update_delivery_status(delivery_id, data.get("status"), g.caller)
    return jsonify(updated), 200


@deliveries_bp.put("/<id:delivery_id>/confirm-receipt")
@require_auth
@require_operation("delivery.confirm_receipt")
def confirm_receipt(delivery_id: int):
    return jsonify(delivery_service.confirm_receipt(delivery_id, g.caller)), 200


@deliveries_bp.delete("/<id:delivery_id>")
@require_auth
@require_operation("delivery.archive")
def archive_delivery(delivery_id: int):
    archived = delivery_service.archive_delivery(delivery_id, g.caller)
    return jsonify({"message": "Delivery archived successfully", "delivery": archived}), 200
