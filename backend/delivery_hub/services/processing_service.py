# Overview: Service-layer operations for processing claims on approved requests.

"""
Processing claims: "who is currently turning this approved request into a delivery".

WHY: Two warehouse operators opening the same approved request would
otherwise both create a delivery for it. A claim is advisory (nothing
stops a determined caller), single-holder and never expires on its own.

DESIGN:
- One row per request, enforced by a unique constraint on request_id
- Claim = insert; a unique violation means someone got there first, so the
  row is re-read: same user -> no-op, different user -> ConflictError
- Release deletes only the caller's own row and is idempotent
- Creating a delivery from the request deletes every claim on it
  (see delivery_service.create_delivery)
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import joinedload

from ..errors import ConflictError, NotFoundError, PreconditionError
from ..extensions import db
from ..models import DeliveryRequest, RequestProcessing
from ..models.requests import REQUEST_STATUS_APPROVED
from .access_policy import CallerContext, authorize
from .concurrency import atomic


def _require_approved(request_id: int) -> DeliveryRequest:
    request = db.session.query(DeliveryRequest).filter_by(id=request_id).first()
    if not request:
        raise NotFoundError("Request not found")
    if request.request_status != REQUEST_STATUS_APPROVED:
        raise PreconditionError(
            "Only approved requests can be processed for delivery",
            currentStatus=request.request_status,
        )
    return request


def _current_claim(request_id: int) -> RequestProcessing | None:
    return (
        db.session.query(RequestProcessing)
        .options(joinedload(RequestProcessing.user))
        .filter_by(request_id=request_id)
        .populate_existing()
        .first()
    )


def _holder_payload(claim: RequestProcessing) -> dict:
    return {
        "id": claim.user_id,
        "username": claim.user.username if claim.user else None,
        "fullName": claim.user.full_name if claim.user else None,
    }


def _claimed_by_other(claim: RequestProcessing) -> ConflictError:
    holder = _holder_payload(claim)
    return ConflictError(
        "Request is already being processed by another user",
        processingUserId=claim.user_id,
        processingUser=holder,
    )


def get_processing_status(request_id: int, caller: CallerContext) -> dict:
    """
    Returns:
        dict: {isBeingProcessed, isCurrentUser, processingUser}

    Raises:
        NotFoundError: no such request
        PreconditionError: request is not approved
    """
    authorize(caller, "processing.view")
    _require_approved(request_id)

    claim = _current_claim(request_id)
    return {
        "isBeingProcessed": claim is not None,
        "isCurrentUser": claim is not None and claim.user_id == caller.user_id,
        "processingUser": _holder_payload(claim) if claim else None,
    }


def claim_request(request_id: int, caller: CallerContext) -> dict:
    """
    Mark an approved request as being processed by the caller.

    Idempotent for the current holder.

    Raises:
        NotFoundError: no such request
        PreconditionError: request is not approved
        ConflictError: another user holds the claim
    """
    authorize(caller, "processing.claim")

    def _op():
        _require_approved(request_id)

        existing = _current_claim(request_id)
        if existing is not None:
            if existing.user_id == caller.user_id:
                return False
            raise _claimed_by_other(existing)

        db.session.add(RequestProcessing(request_id=request_id, user_id=caller.user_id))
        db.session.flush()
        return True

    try:
        created = atomic(
            _op,
            integrity_error=lambda exc: ConflictError("Request is already being processed by another user"),
        )
    except ConflictError as exc:
        if not isinstance(exc.__cause__, IntegrityError):
            raise
        # Another insert landed between our read and our insert
        winner = _current_claim(request_id)
        if winner is None:
            raise
        if winner.user_id != caller.user_id:
            raise _claimed_by_other(winner) from exc
        created = False

    if created:
        current_app.logger.info("Request %s claimed for processing by user %s", request_id, caller.user_id)
    return {"message": "Request marked as being processed"}


def release_request(request_id: int, caller: CallerContext) -> dict:
    """Drop the caller's own claim on a request. No error if there is none."""
    authorize(caller, "processing.release")

    def _op():
        return db.session.query(RequestProcessing).filter_by(
            request_id=request_id,
            user_id=caller.user_id,
        ).delete(synchronize_session=False)

    deleted = atomic(_op)
    if deleted:
        current_app.logger.info("Request %s released by user %s", request_id, caller.user_id)
    return {"message": "Request unmarked as being processed"}


def list_claims(caller: CallerContext) -> list[dict]:
    """All outstanding claims, oldest first (admin recovery view)."""
    authorize(caller, "processing.manage")
    claims = (
        db.session.query(RequestProcessing)
        .options(joinedload(RequestProcessing.user))
        .order_by(RequestProcessing.started_at.asc(), RequestProcessing.id.asc())
        .all()
    )
    return [c.to_dict() for c in claims]


def force_release(request_id: int, caller: CallerContext) -> int:
    """
    Delete any claim on a request regardless of holder.

    Claims never expire, so this is how an admin frees a request left
    claimed by a crashed or absent client. Returns rows removed.
    """
    authorize(caller, "processing.manage")

    def _op():
        return db.session.query(RequestProcessing).filter_by(
            request_id=request_id,
        ).delete(synchronize_session=False)

    deleted = atomic(_op)
    current_app.logger.warning(
        "Processing claim on request %s force-released by user %s (%d removed)",
        request_id, caller.user_id, deleted,
    )
    return deleted
