# Overview: Permanent removal of archived requests and deliveries (admin only).

"""
Archive clear.

Archived rows are kept for history until an admin clears them. Everything
goes in one transaction: either the whole archive is removed or nothing is.

Removed:
- requests with request_status 'archived' or is_archived, with their
  items and processing claims
- deliveries with status cancelled/archived or is_archived

Surviving requests that pointed at a removed delivery get delivery_id
cleared, and surviving deliveries bound to a removed request get
request_id cleared, so no dangling references are left behind.
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Delivery, DeliveryRequest, DeliveryRequestItem, RequestProcessing
from ..models.deliveries import DELIVERY_STATUS_ARCHIVED, DELIVERY_STATUS_CANCELLED
from ..models.requests import REQUEST_STATUS_ARCHIVED
from .access_policy import CallerContext, authorize
from .concurrency import atomic


def _archived_request_ids() -> list[int]:
    rows = db.session.query(DeliveryRequest.id).filter(
        db.or_(
            DeliveryRequest.request_status == REQUEST_STATUS_ARCHIVED,
            DeliveryRequest.is_archived.is_(True),
        )
    ).all()
    return [row.id for row in rows]


def _archived_delivery_ids() -> list[int]:
    rows = db.session.query(Delivery.id).filter(
        db.or_(
            Delivery.status.in_((DELIVERY_STATUS_CANCELLED, DELIVERY_STATUS_ARCHIVED)),
            Delivery.is_archived.is_(True),
        )
    ).all()
    return [row.id for row in rows]


def clear_archive(caller: CallerContext) -> dict:
    """
    Delete every archived request and delivery.

    Returns:
        dict: {"delivery_requests": n, "deliveries": m, "total": n + m}

    Raises:
        AuthorizationError: caller is not an admin
    """
    authorize(caller, "archive.clear", "Only admins can clear the archive")

    def _op():
        request_ids = _archived_request_ids()
        delivery_ids = _archived_delivery_ids()

        if delivery_ids:
            db.session.query(DeliveryRequest).filter(
                DeliveryRequest.delivery_id.in_(delivery_ids),
            ).update({DeliveryRequest.delivery_id: None}, synchronize_session=False)

        if request_ids:
            db.session.query(Delivery).filter(
                Delivery.request_id.in_(request_ids),
            ).update({Delivery.request_id: None}, synchronize_session=False)
            db.session.query(RequestProcessing).filter(
                RequestProcessing.request_id.in_(request_ids),
            ).delete(synchronize_session=False)
            db.session.query(DeliveryRequestItem).filter(
                DeliveryRequestItem.request_id.in_(request_ids),
            ).delete(synchronize_session=False)
            removed_requests = db.session.query(DeliveryRequest).filter(
                DeliveryRequest.id.in_(request_ids),
            ).delete(synchronize_session=False)
        else:
            removed_requests = 0

        if delivery_ids:
            removed_deliveries = db.session.query(Delivery).filter(
                Delivery.id.in_(delivery_ids),
            ).delete(synchronize_session=False)
        else:
            removed_deliveries = 0

        return removed_requests, removed_deliveries

    removed_requests, removed_deliveries = atomic(_op)
    db.session.expire_all()

    current_app.logger.info(
        "Archive cleared by user %s: %d request(s), %d deliveries",
        caller.user_id, removed_requests, removed_deliveries,
    )
    return {
        "delivery_requests": removed_requests,
        "deliveries": removed_deliveries,
        "total": removed_requests + removed_deliveries,
    }
