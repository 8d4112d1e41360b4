# backend/delivery_hub/services/delivery_service.py
"""
Delivery lifecycle service.

WHY: Track a shipment from creation to confirmed receipt, and keep the
delivery request it was created from in step.

LIFECYCLE:
1. pending: created (always; any status sent by the client is ignored)
2. preparing -> loading -> in_transit: advanced by warehouse/admin
3. delivered: receipt confirmed; received_at/received_by stamped once
4. cancelled: archived before delivery (archive only)

Statuses only move forward. Skipping ahead is allowed, going back is not.

REQUEST BINDING:
- A delivery created from a request takes the request's id as its own id
- Creation, the request moving to processing and the release of any
  processing claim commit together
- Later status changes propagate to the request best-effort: the delivery
  change stands even if the request update fails (logged, and repairable
  with reconcile_request_statuses)
"""
from __future__ import annotations

import random
import time
from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import joinedload

from ..errors import ConflictError, NotFoundError, PreconditionError, ValidationError
from ..extensions import db
from ..models import Delivery, DeliveryRequest, RequestProcessing
from ..models.deliveries import (
    DELIVERY_STATUS_CANCELLED,
    DELIVERY_STATUS_DELIVERED,
    DELIVERY_STATUS_IN_TRANSIT,
    DELIVERY_STATUS_LOADING,
    DELIVERY_STATUS_PENDING,
    DELIVERY_STATUS_PREPARING,
)
from ..models.requests import (
    REQUEST_STATUS_APPROVED,
    REQUEST_STATUS_DELIVERED,
    REQUEST_STATUS_PROCESSING,
)
from ..time_utils import utcnow
from ..validation import clean_text, parse_date, parse_decimal, parse_id
from .access_policy import CallerContext, authorize, require_branch_access, scoped_branch_id
from .concurrency import atomic, constraint_name, lock_for_update
from .query_filters import DateWindow, apply_predicates


# Forward order of the lifecycle; cancelled sits outside it
STATUS_ORDER = (
    DELIVERY_STATUS_PENDING,
    DELIVERY_STATUS_PREPARING,
    DELIVERY_STATUS_LOADING,
    DELIVERY_STATUS_IN_TRANSIT,
    DELIVERY_STATUS_DELIVERED,
)
DELIVERY_STATUSES = STATUS_ORDER + (DELIVERY_STATUS_CANCELLED,)
ONGOING_STATUSES = (
    DELIVERY_STATUS_PENDING,
    DELIVERY_STATUS_PREPARING,
    DELIVERY_STATUS_LOADING,
    DELIVERY_STATUS_IN_TRANSIT,
)
TERMINAL_STATUSES = (DELIVERY_STATUS_DELIVERED, DELIVERY_STATUS_CANCELLED)

# Delivery status -> status the bound request moves to
REQUEST_PROPAGATION = {
    DELIVERY_STATUS_DELIVERED: REQUEST_STATUS_DELIVERED,
    DELIVERY_STATUS_IN_TRANSIT: REQUEST_STATUS_PROCESSING,
    DELIVERY_STATUS_LOADING: REQUEST_STATUS_PROCESSING,
}
# Request statuses each propagated value may overwrite (never backward)
_PROPAGATION_SOURCES = {
    REQUEST_STATUS_PROCESSING: (REQUEST_STATUS_APPROVED, REQUEST_STATUS_PROCESSING),
    REQUEST_STATUS_DELIVERED: (REQUEST_STATUS_APPROVED, REQUEST_STATUS_PROCESSING),
}

# Column lengths inputs are trimmed to
TRACKING_NUMBER_MAX = 50
RECIPIENT_NAME_MAX = 100
RECIPIENT_ADDRESS_MAX = 200
RECIPIENT_PHONE_MAX = 20
PACKAGE_DESCRIPTION_MAX = 500


@dataclass(frozen=True)
class DeliveryFilters:
    """Listing filters; each field contributes zero or more predicates."""
    branch_id: int | None = None
    ongoing: bool = False
    include_archived: bool = False
    archived_only: bool = False
    window: DateWindow = field(default_factory=DateWindow)

    def predicates(self) -> list:
        predicates = []
        if self.branch_id is not None:
            predicates.append(Delivery.branch_id == self.branch_id)
        if self.ongoing:
            predicates.append(Delivery.status.in_(ONGOING_STATUSES))
        if self.archived_only:
            predicates.append(Delivery.is_archived.is_(True))
        elif not self.include_archived:
            predicates.append(Delivery.is_archived.is_(False))
        predicates.extend(self.window.predicates(Delivery.created_at))
        return predicates


def generate_tracking_number(request_id: int | None = None) -> str:
    """
    REQ-{requestId}-{last 6 digits of epoch ms}-{4 random digits} for
    request-bound deliveries, SBN-{last 6 digits}-{4 random digits} otherwise.
    """
    stamp = str(int(time.time() * 1000))[-6:]
    suffix = f"{random.randrange(10000):04d}"
    if request_id:
        return f"REQ-{request_id}-{stamp}-{suffix}"
    return f"SBN-{stamp}-{suffix}"


def _base_query():
    return db.session.query(Delivery).options(
        joinedload(Delivery.branch),
        joinedload(Delivery.creator),
        joinedload(Delivery.request),
    )


def _load(delivery_id: int) -> Delivery:
    delivery = _base_query().filter(Delivery.id == delivery_id).populate_existing().first()
    if not delivery:
        raise NotFoundError("Delivery not found")
    return delivery


def _load_for_update(delivery_id: int) -> Delivery:
    delivery = lock_for_update(db.session.query(Delivery).filter_by(id=delivery_id)).first()
    if not delivery:
        raise NotFoundError("Delivery not found")
    return delivery


def _conflict_from_integrity(exc: IntegrityError) -> ConflictError:
    """Tell apart the three uniqueness rules a delivery write can break."""
    message = constraint_name(exc)
    if "tracking_number" in message:
        return ConflictError("Tracking number already exists", field="tracking_number")
    if "request_id" in message:
        return ConflictError("A delivery already exists for this request", field="request_id")
    return ConflictError("Delivery id is already in use by another delivery", field="id")


def _recipient_fields(fields: dict) -> dict:
    weight = parse_decimal(fields.get("weight"), "weight", required=False)
    if weight is not None and weight < 0:
        raise ValidationError("weight cannot be negative")
    return {
        "recipient_name": clean_text(fields.get("recipient_name"), RECIPIENT_NAME_MAX),
        "recipient_address": clean_text(fields.get("recipient_address"), RECIPIENT_ADDRESS_MAX),
        "recipient_phone": clean_text(fields.get("recipient_phone"), RECIPIENT_PHONE_MAX),
        "package_description": clean_text(fields.get("package_description"), PACKAGE_DESCRIPTION_MAX),
        "weight": weight,
        "delivery_date": parse_date(fields.get("delivery_date"), "delivery_date"),
        "branch_id": parse_id(fields.get("branch_id"), "branch_id"),
    }


def _apply_status(delivery: Delivery, new_status: str, caller: CallerContext) -> bool:
    """
    Move delivery to new_status if that is a forward step.

    Returns True when the status changed. Stamps receipt on the transition
    into delivered.

    Raises:
        PreconditionError: terminal delivery, backward step, or cancel outside archive
    """
    current = delivery.status
    if new_status == current:
        return False

    if current in TERMINAL_STATUSES:
        raise PreconditionError(f"Delivery is already {current}", currentStatus=current)

    if new_status == DELIVERY_STATUS_CANCELLED:
        raise PreconditionError("Deliveries are cancelled by archiving them", currentStatus=current)

    if current in STATUS_ORDER and STATUS_ORDER.index(new_status) < STATUS_ORDER.index(current):
        raise PreconditionError(
            f"Cannot move delivery back from {current} to {new_status}",
            currentStatus=current,
        )

    delivery.status = new_status
    if new_status == DELIVERY_STATUS_DELIVERED and delivery.received_at is None:
        delivery.received_at = utcnow()
        delivery.received_by = caller.user_id
    return True


def _propagate_to_request(delivery: Delivery) -> None:
    """
    Best-effort: move the bound request to match the delivery.

    Runs in a savepoint so a failure here rolls back only the request
    update; the delivery change already made in this transaction stands.
    """
    target = REQUEST_PROPAGATION.get(delivery.status)
    if not delivery.request_id or target is None:
        return

    db.session.flush()
    try:
        with db.session.begin_nested():
            db.session.query(DeliveryRequest).filter(
                DeliveryRequest.id == delivery.request_id,
                DeliveryRequest.request_status.in_(_PROPAGATION_SOURCES[target]),
            ).update(
                {
                    DeliveryRequest.request_status: target,
                    DeliveryRequest.updated_at: utcnow(),
                },
                synchronize_session=False,
            )
    except SQLAlchemyError:
        current_app.logger.warning(
            "Failed to propagate status %s from delivery %s to request %s; "
            "run 'flask deliveries reconcile' to repair",
            target, delivery.id, delivery.request_id, exc_info=True,
        )


def create_delivery(fields: dict, caller: CallerContext) -> dict:
    """
    Create a delivery, optionally from a delivery request.

    Request-bound deliveries take the request's id, move the request to
    processing, record the back-reference and clear processing claims, all
    in the same transaction as the insert.

    Raises:
        ValidationError: missing recipient, unknown request, request already bound
        AuthorizationError: branch user targeting another branch
        PreconditionError: bound request is not approved
        ConflictError: tracking number, request binding or id already taken
    """
    authorize(caller, "delivery.create")

    fields = fields or {}
    values = _recipient_fields(fields)
    if not values["recipient_name"] or not values["recipient_address"]:
        raise ValidationError("Missing required fields: recipient name and address are required")

    # Branch users create deliveries for their own branch only.
    if caller.is_branch:
        if values["branch_id"] is None:
            values["branch_id"] = scoped_branch_id(caller)
        require_branch_access(caller, values["branch_id"], "You can only create deliveries for your branch")

    request_id = parse_id(fields.get("request_id"), "request_id")

    def _op():
        request = None
        if request_id is not None:
            request = lock_for_update(db.session.query(DeliveryRequest).filter_by(id=request_id)).first()
            if not request:
                raise ValidationError("Delivery request not found")
            require_branch_access(caller, request.branch_id, "You can only create deliveries for your branch")

            already_bound = db.session.query(Delivery.id).filter_by(request_id=request_id).first()
            if already_bound:
                raise ValidationError("A delivery already exists for this request")

            if request.request_status != REQUEST_STATUS_APPROVED:
                raise PreconditionError(
                    "Only approved requests can be turned into deliveries",
                    currentStatus=request.request_status,
                )

            if db.session.query(Delivery.id).filter_by(id=request.id).first():
                raise ConflictError("Delivery id is already in use by another delivery", field="id")

        delivery = Delivery(
            tracking_number=generate_tracking_number(request_id),
            status=DELIVERY_STATUS_PENDING,
            created_by=caller.user_id,
            request_id=request_id,
            **values,
        )
        if request is not None:
            delivery.id = request.id
            if delivery.branch_id is None:
                delivery.branch_id = request.branch_id

        db.session.add(delivery)
        db.session.flush()

        if request is not None:
            request.request_status = REQUEST_STATUS_PROCESSING
            request.delivery_id = delivery.id
            db.session.query(RequestProcessing).filter_by(
                request_id=request.id
            ).delete(synchronize_session=False)

        return delivery.id

    delivery_id = atomic(_op, integrity_error=_conflict_from_integrity)
    current_app.logger.info(
        "Delivery %s created by user %s%s",
        delivery_id, caller.user_id, f" from request {request_id}" if request_id else "",
    )
    return _load(delivery_id).to_dict()


def get_delivery(delivery_id: int, caller: CallerContext) -> dict:
    authorize(caller, "delivery.view")
    delivery = _load(delivery_id)
    require_branch_access(caller, delivery.branch_id, "Unauthorized to view this delivery")
    return delivery.to_dict()


def list_deliveries(caller: CallerContext, filters: DeliveryFilters | None = None) -> list[dict]:
    """
    List deliveries, newest first. Archived rows are excluded unless asked for.

    Branch users are pinned to their own branch whatever filter they send.
    """
    authorize(caller, "delivery.view")
    filters = filters or DeliveryFilters()

    branch_id = scoped_branch_id(caller, filters.branch_id)
    if branch_id != filters.branch_id:
        filters = DeliveryFilters(
            branch_id=branch_id,
            ongoing=filters.ongoing,
            include_archived=filters.include_archived,
            archived_only=filters.archived_only,
            window=filters.window,
        )

    query = apply_predicates(_base_query(), filters.predicates())
    deliveries = query.order_by(Delivery.created_at.desc(), Delivery.id.desc()).all()
    return [d.to_dict() for d in deliveries]


def update_delivery(delivery_id: int, fields: dict, caller: CallerContext) -> dict:
    """
    Replace a delivery's details.

    An unknown or missing status means pending; a status change still has to
    be a legal forward step.

    Raises:
        ValidationError: missing tracking number, recipient name or address
        NotFoundError: no such delivery
        PreconditionError: status change is not a forward step
        ConflictError: tracking number taken by another delivery
    """
    authorize(caller, "delivery.update")

    fields = fields or {}
    values = _recipient_fields(fields)
    tracking_number = clean_text(fields.get("tracking_number"), TRACKING_NUMBER_MAX)
    if not tracking_number or not values["recipient_name"] or not values["recipient_address"]:
        raise ValidationError(
            "Missing required fields: tracking number, recipient name, and address are required"
        )

    status = fields.get("status")
    if status not in DELIVERY_STATUSES:
        status = DELIVERY_STATUS_PENDING

    # A delivery never loses its branch
    if values["branch_id"] is None:
        del values["branch_id"]

    def _op():
        delivery = _load_for_update(delivery_id)
        require_branch_access(caller, delivery.branch_id, "You can only edit deliveries for your branch")
        if "branch_id" in values:
            require_branch_access(caller, values["branch_id"], "You can only edit deliveries for your branch")
        delivery.tracking_number = tracking_number
        for key, value in values.items():
            setattr(delivery, key, value)

        if _apply_status(delivery, status, caller):
            _propagate_to_request(delivery)

    atomic(_op, integrity_error=_conflict_from_integrity)
    return _load(delivery_id).to_dict()


def update_delivery_status(delivery_id: int, new_status: str, caller: CallerContext) -> dict:
    """
    Advance a delivery's status (admin/warehouse).

    Raises:
        AuthorizationError: caller is not admin/warehouse
        ValidationError: missing or unknown status
        NotFoundError: no such delivery
        PreconditionError: not a forward step
    """
    authorize(caller, "delivery.update_status", "Only warehouse staff or admin can update delivery status")

    if not new_status:
        raise ValidationError("Status is required")
    if new_status not in DELIVERY_STATUSES:
        raise ValidationError("Invalid status value")

    def _op():
        delivery = _load_for_update(delivery_id)
        changed = _apply_status(delivery, new_status, caller)
        if changed:
            _propagate_to_request(delivery)
        return changed

    if atomic(_op):
        current_app.logger.info(
            "Delivery %s moved to %s by user %s", delivery_id, new_status, caller.user_id
        )
    return _load(delivery_id).to_dict()


def confirm_receipt(delivery_id: int, caller: CallerContext) -> dict:
    """
    Confirm an in-transit delivery arrived (branch users for their branch, or admin).

    Raises:
        AuthorizationError: warehouse caller, or another branch's delivery
        NotFoundError: no such delivery
        PreconditionError: delivery is not in transit
    """
    authorize(caller, "delivery.confirm_receipt", "Only branch staff or admin can confirm receipt")

    def _op():
        delivery = _load_for_update(delivery_id)
        require_branch_access(caller, delivery.branch_id, "You can only confirm deliveries for your branch")

        if delivery.status != DELIVERY_STATUS_IN_TRANSIT:
            raise PreconditionError(
                "Only in-transit deliveries can be confirmed as received",
                currentStatus=delivery.status,
            )

        _apply_status(delivery, DELIVERY_STATUS_DELIVERED, caller)
        _propagate_to_request(delivery)

    atomic(_op)
    current_app.logger.info("Delivery %s receipt confirmed by user %s", delivery_id, caller.user_id)
    return _load(delivery_id).to_dict()


def archive_delivery(delivery_id: int, caller: CallerContext) -> dict:
    """
    Soft-delete a delivery: flag it archived and cancel it unless delivered.

    The row is kept; only archive_service.clear_archive removes it.
    """
    authorize(caller, "delivery.archive")

    def _op():
        delivery = _load_for_update(delivery_id)
        require_branch_access(caller, delivery.branch_id, "You can only archive deliveries for your branch")
        if delivery.is_archived:
            return False

        if delivery.status != DELIVERY_STATUS_DELIVERED:
            delivery.status = DELIVERY_STATUS_CANCELLED
        delivery.is_archived = True
        delivery.archived_by = caller.user_id
        delivery.archived_at = utcnow()
        return True

    if atomic(_op):
        current_app.logger.info("Delivery %s archived by user %s", delivery_id, caller.user_id)
    return _load(delivery_id).to_dict()


def reconcile_request_statuses() -> int:
    """
    Re-derive bound request statuses from their deliveries.

    Repairs what a failed best-effort propagation left behind: missing
    back-references, and requests still approved/processing whose delivery
    has moved on. Never moves a request backward. Returns rows fixed.
    """
    def _op():
        fixed = 0
        rows = (
            db.session.query(Delivery, DeliveryRequest)
            .join(DeliveryRequest, DeliveryRequest.id == Delivery.request_id)
            .all()
        )
        for delivery, request in rows:
            changed = False
            if request.delivery_id != delivery.id:
                request.delivery_id = delivery.id
                changed = True

            if delivery.status == DELIVERY_STATUS_DELIVERED:
                target = REQUEST_STATUS_DELIVERED
            elif delivery.status in ONGOING_STATUSES:
                target = REQUEST_STATUS_PROCESSING
            else:
                target = None

            if (
                target is not None
                and request.request_status != target
                and request.request_status in _PROPAGATION_SOURCES[target]
            ):
                request.request_status = target
                changed = True

            if changed:
                fixed += 1
        return fixed

    fixed = atomic(_op)
    if fixed:
        current_app.logger.warning("Reconciled %d delivery request(s) with their deliveries", fixed)
    return fixed
