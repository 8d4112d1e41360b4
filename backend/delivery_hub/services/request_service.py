# backend/delivery_hub/services/request_service.py
"""
Delivery request lifecycle service.

WHY: Branches ask for goods; warehouse staff decide once. The first
decision out of pending must win exactly once even when two operators
click at the same moment, and the loser must be told who won.

LIFECYCLE:
1. pending: created by a branch user with its line items
2. approved / rejected: single review decision (reason required to reject)
3. processing: a delivery was created from the request (delivery_service)
4. delivered: the bound delivery was delivered (delivery_service)
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any

from flask import current_app
from sqlalchemy.orm import joinedload, selectinload

from ..errors import AuthorizationError, ConflictError, NotFoundError, PreconditionError, ValidationError
from ..extensions import db
from ..models import Delivery, DeliveryRequest, DeliveryRequestItem, RequestProcessing
from ..models.requests import (
    REQUEST_STATUS_APPROVED,
    REQUEST_STATUS_DELIVERED,
    REQUEST_STATUS_PENDING,
    REQUEST_STATUS_PROCESSING,
    REQUEST_STATUS_REJECTED,
)
from ..time_utils import utcnow
from ..validation import CENTS, clean_text, parse_date, parse_decimal, require_text
from .access_policy import CallerContext, authorize, require_branch_access, scoped_branch_id
from .concurrency import atomic
from .query_filters import DateWindow, apply_predicates


# Values accepted by update_request_status
SETTABLE_STATUSES = (
    REQUEST_STATUS_APPROVED,
    REQUEST_STATUS_REJECTED,
    REQUEST_STATUS_PENDING,
    REQUEST_STATUS_PROCESSING,
    REQUEST_STATUS_DELIVERED,
)
# Legal first decisions out of pending
REVIEW_DECISIONS = (REQUEST_STATUS_APPROVED, REQUEST_STATUS_REJECTED)
ONGOING_STATUSES = (REQUEST_STATUS_PENDING, REQUEST_STATUS_APPROVED, REQUEST_STATUS_PROCESSING)
TERMINAL_STATUSES = (REQUEST_STATUS_REJECTED, REQUEST_STATUS_DELIVERED)

PRIORITIES = ("low", "medium", "high")
DEFAULT_PRIORITY = "medium"


def _base_query():
    return db.session.query(DeliveryRequest).options(
        joinedload(DeliveryRequest.branch),
        joinedload(DeliveryRequest.creator),
        joinedload(DeliveryRequest.processor),
        selectinload(DeliveryRequest.items),
    )


def _load(request_id: int) -> DeliveryRequest:
    request = _base_query().filter(DeliveryRequest.id == request_id).populate_existing().first()
    if not request:
        raise NotFoundError("Delivery request not found")
    return request


def _validate_items(items: Any) -> list[dict]:
    """
    Normalize submitted line items.

    Each item needs description, unit, quantity > 0 and unit_price >= 0.
    subtotal defaults to quantity * unit_price.
    """
    if not items or not isinstance(items, list):
        raise ValidationError("At least one item is required")

    cleaned = []
    for index, item in enumerate(items, start=1):
        if not isinstance(item, dict):
            raise ValidationError(f"Item {index} must be an object")

        description = require_text(item.get("description"), f"Item {index} description", 255)
        unit = require_text(item.get("unit"), f"Item {index} unit", 20)
        quantity = parse_decimal(item.get("quantity"), f"Item {index} quantity")
        unit_price = parse_decimal(item.get("unit_price"), f"Item {index} unit price")

        if quantity <= 0:
            raise ValidationError("Item quantity must be greater than zero")
        if unit_price < 0:
            raise ValidationError("Item unit price cannot be negative")

        subtotal = parse_decimal(item.get("subtotal"), f"Item {index} subtotal", required=False)
        if subtotal is None:
            subtotal = (quantity * unit_price).quantize(CENTS)

        cleaned.append({
            "item_code": clean_text(item.get("item_code"), 50),
            "description": description,
            "quantity": quantity,
            "unit": unit,
            "unit_price": unit_price,
            "subtotal": subtotal,
        })
    return cleaned


def create_request(
    caller: CallerContext,
    items: list,
    delivery_date: Any = None,
    priority: str | None = None,
    notes: str | None = None,
    total_amount: Any = None,
) -> dict:
    """
    Create a pending delivery request with its items (branch users only).

    The request and every item are written in one transaction.

    Returns:
        dict: Request with items, branch name and requester

    Raises:
        AuthorizationError: caller is not a branch user
        ValidationError: empty items, bad quantity/price, bad date or priority
    """
    authorize(caller, "request.create", "Only branch users can create delivery requests")

    if caller.branch_id is None:
        raise ValidationError("Branch is required")

    cleaned_items = _validate_items(items)

    priority = priority or DEFAULT_PRIORITY
    if priority not in PRIORITIES:
        raise ValidationError(f"priority must be one of: {', '.join(PRIORITIES)}")

    parsed_date = parse_date(delivery_date, "deliveryDate")

    total = parse_decimal(total_amount, "total_amount", required=False)
    if total is None:
        total = sum((item["subtotal"] for item in cleaned_items), Decimal("0.00"))
    elif total < 0:
        raise ValidationError("total_amount cannot be negative")

    def _op():
        request = DeliveryRequest(
            branch_id=caller.branch_id,
            created_by_id=caller.user_id,
            delivery_date=parsed_date,
            priority=priority,
            notes=clean_text(notes),
            total_amount=total,
            request_status=REQUEST_STATUS_PENDING,
        )
        db.session.add(request)
        db.session.flush()  # Get ID

        for item in cleaned_items:
            db.session.add(DeliveryRequestItem(request_id=request.id, **item))

        return request.id

    request_id = atomic(_op)
    current_app.logger.info(
        "Delivery request %s created by user %s for branch %s (%d items)",
        request_id, caller.user_id, caller.branch_id, len(cleaned_items),
    )
    return _load(request_id).to_dict()


def get_request(request_id: int, caller: CallerContext) -> dict:
    """
    Raises:
        NotFoundError: no such request
        AuthorizationError: branch caller asking for another branch's request
    """
    authorize(caller, "request.view")
    request = _load(request_id)
    require_branch_access(caller, request.branch_id, "Unauthorized to view this request")
    return request.to_dict()


def list_requests(
    caller: CallerContext,
    branch_id: int | None = None,
    ongoing: bool = False,
    include_archived: bool = False,
) -> list[dict]:
    """
    List requests, newest first.

    Admin/warehouse see every branch (optionally filtered by branch_id);
    branch users only ever see their own branch.
    """
    authorize(caller, "request.view")

    predicates = []
    effective_branch = scoped_branch_id(caller, branch_id)
    if effective_branch is not None:
        predicates.append(DeliveryRequest.branch_id == effective_branch)
    if ongoing:
        predicates.append(DeliveryRequest.request_status.in_(ONGOING_STATUSES))
    if not include_archived:
        predicates.append(DeliveryRequest.is_archived.is_(False))

    query = apply_predicates(_base_query(), predicates)
    requests = query.order_by(DeliveryRequest.created_at.desc(), DeliveryRequest.id.desc()).all()
    return [r.to_dict() for r in requests]


def list_archived_requests(
    caller: CallerContext,
    branch_id: int | None = None,
    window: DateWindow | None = None,
) -> list[dict]:
    """Terminal (rejected/delivered) or archived requests, newest first."""
    authorize(caller, "request.view")

    predicates = [
        db.or_(
            DeliveryRequest.request_status.in_(TERMINAL_STATUSES),
            DeliveryRequest.is_archived.is_(True),
        )
    ]
    effective_branch = scoped_branch_id(caller, branch_id)
    if effective_branch is not None:
        predicates.append(DeliveryRequest.branch_id == effective_branch)
    if window is not None:
        predicates.extend(window.predicates(DeliveryRequest.created_at))

    query = apply_predicates(_base_query(), predicates)
    requests = query.order_by(DeliveryRequest.created_at.desc(), DeliveryRequest.id.desc()).all()
    return [r.to_dict() for r in requests]


def update_request_status(
    request_id: int,
    new_status: str,
    caller: CallerContext,
    reason: str | None = None,
) -> dict:
    """
    Record the review decision on a pending request.

    The write is a single conditional UPDATE guarded by
    request_status = 'pending', so of several concurrent decisions exactly
    one changes the row; the others see zero affected rows and get a
    ConflictError naming the user who processed it.

    Raises:
        AuthorizationError: caller is not admin/warehouse
        ValidationError: unknown status, or rejection without a reason
        NotFoundError: no such request
        ConflictError: request already left pending
        PreconditionError: pending request asked to jump straight past review
    """
    authorize(caller, "request.update_status", "Unauthorized to update request status")

    if not new_status or new_status not in SETTABLE_STATUSES:
        raise ValidationError(
            "Valid status (approved/rejected/pending/processing/delivered) is required"
        )

    reason = clean_text(reason)
    if new_status == REQUEST_STATUS_REJECTED and not reason:
        raise ValidationError("Reason is required when rejecting a request")

    def _op():
        current = db.session.query(DeliveryRequest).filter_by(id=request_id).populate_existing().first()
        if not current:
            raise NotFoundError("Delivery request not found")

        if current.request_status == REQUEST_STATUS_PENDING and new_status not in REVIEW_DECISIONS:
            raise PreconditionError(
                "Pending requests can only be approved or rejected",
                currentStatus=current.request_status,
            )

        updated = db.session.query(DeliveryRequest).filter(
            DeliveryRequest.id == request_id,
            DeliveryRequest.request_status == REQUEST_STATUS_PENDING,
        ).update(
            {
                DeliveryRequest.request_status: new_status,
                DeliveryRequest.reason: reason,
                DeliveryRequest.processed_by: caller.user_id,
                DeliveryRequest.updated_at: utcnow(),
            },
            synchronize_session=False,
        )

        if updated == 0:
            # Lost the race (or it was never pending): report the winner
            winner = _load(request_id)
            processor_username = winner.processor.username if winner.processor else "another user"
            raise ConflictError(
                f"Oops, this request has already been {winner.request_status} by {processor_username}",
                currentStatus=winner.request_status,
                processorUsername=processor_username,
            )

    atomic(_op)
    current_app.logger.info(
        "Delivery request %s %s by user %s", request_id, new_status, caller.user_id
    )
    return _load(request_id).to_dict()


def delete_request(request_id: int, caller: CallerContext) -> None:
    """
    Physically delete a request and its items.

    Admins may delete any request; branch users only their own branch's
    requests while still pending.

    Raises:
        NotFoundError: no such request
        AuthorizationError: any other caller/state combination
    """
    authorize(caller, "request.delete", "Unauthorized to delete this request")

    def _op():
        request = db.session.query(DeliveryRequest).filter_by(id=request_id).first()
        if not request:
            raise NotFoundError("Delivery request not found")

        if not caller.is_admin:
            require_branch_access(caller, request.branch_id, "You can only delete requests from your own branch")
            if request.request_status != REQUEST_STATUS_PENDING:
                raise AuthorizationError("Only pending requests can be deleted")

        db.session.query(RequestProcessing).filter_by(request_id=request_id).delete(synchronize_session=False)
        db.session.query(Delivery).filter_by(request_id=request_id).update(
            {Delivery.request_id: None}, synchronize_session=False
        )
        for item in list(request.items):
            db.session.delete(item)
        db.session.delete(request)

    atomic(_op)
    current_app.logger.info("Delivery request %s deleted by user %s", request_id, caller.user_id)


def archive_request(request_id: int, caller: CallerContext) -> dict:
    """
    Soft-archive a rejected or delivered request.

    Raises:
        NotFoundError: no such request
        AuthorizationError: branch caller and another branch's request
        PreconditionError: request is not in a terminal state
    """
    authorize(caller, "request.archive")

    def _op():
        request = db.session.query(DeliveryRequest).filter_by(id=request_id).first()
        if not request:
            raise NotFoundError("Delivery request not found")
        require_branch_access(caller, request.branch_id, "You can only archive requests from your own branch")

        if request.is_archived:
            return
        if request.request_status not in TERMINAL_STATUSES:
            raise PreconditionError(
                "Only rejected or delivered requests can be archived",
                currentStatus=request.request_status,
            )

        request.is_archived = True
        request.archived_by = caller.user_id
        request.archived_at = utcnow()

    atomic(_op)
    return _load(request_id).to_dict()
