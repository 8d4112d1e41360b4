"""
Delivery lifecycle tests.

Verifies:
- Creation from a request (co-identified id, tracking number, request moved
  to processing, claims released) and standalone creation
- Forward-only status transitions with receipt stamping
- Status propagation to the bound request and its repair path
- Receipt confirmation, archiving and listing filters
"""

import logging
import re

import pytest
from sqlalchemy.exc import OperationalError

from delivery_hub.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    PreconditionError,
    ValidationError,
)
from delivery_hub.models import Delivery, DeliveryRequest, RequestProcessing
from delivery_hub.services import delivery_service, processing_service, request_service
from delivery_hub.services.delivery_service import DeliveryFilters


RECIPIENT = {
    "recipient_name": "Branch A Receiving",
    "recipient_address": "Branch A Street 1",
    "recipient_phone": "555-0101",
    "package_description": "Office supplies",
    "weight": "12.5",
}


def _fields(**overrides):
    data = dict(RECIPIENT)
    data.update(overrides)
    return data


@pytest.fixture
def bound_delivery(approved_request, warehouse):
    return delivery_service.create_delivery(_fields(request_id=approved_request["id"]), warehouse)


def _request_status(db_session, request_id):
    db_session.expire_all()
    return db_session.get(DeliveryRequest, request_id).request_status


# =============================================================================
# TRACKING NUMBERS
# =============================================================================


class TestTrackingNumbers:

    def test_request_bound_format(self):
        assert re.fullmatch(r"REQ-42-\d{6}-\d{4}", delivery_service.generate_tracking_number(42))

    def test_standalone_format(self):
        assert re.fullmatch(r"SBN-\d{6}-\d{4}", delivery_service.generate_tracking_number())


# =============================================================================
# CREATE
# =============================================================================


class TestCreateDelivery:

    def test_create_from_request(self, approved_request, warehouse, db_session, branch_a):
        rid = approved_request["id"]
        processing_service.claim_request(rid, warehouse)

        created = delivery_service.create_delivery(
            _fields(request_id=rid, status="delivered"), warehouse
        )

        assert created["id"] == rid
        assert created["request_id"] == rid
        assert created["status"] == "pending"
        assert created["branch_id"] == branch_a.id
        assert created["weight"] == 12.5
        assert re.fullmatch(rf"REQ-{rid}-\d{{6}}-\d{{4}}", created["tracking_number"])
        assert created["request_status"] == "processing"

        db_session.expire_all()
        request = db_session.get(DeliveryRequest, rid)
        assert request.request_status == "processing"
        assert request.delivery_id == rid
        assert db_session.query(RequestProcessing).filter_by(request_id=rid).count() == 0

    def test_create_standalone(self, branch_caller, branch_a):
        created = delivery_service.create_delivery(_fields(branch_id=branch_a.id), branch_caller)
        assert created["request_id"] is None
        assert created["status"] == "pending"
        assert created["tracking_number"].startswith("SBN-")

    def test_standalone_defaults_to_callers_branch(self, branch_caller, branch_a):
        created = delivery_service.create_delivery(_fields(), branch_caller)
        assert created["branch_id"] == branch_a.id

        assert delivery_service.get_delivery(created["id"], branch_caller)["id"] == created["id"]
        archived = delivery_service.archive_delivery(created["id"], branch_caller)
        assert archived["is_archived"] is True

    def test_branch_user_cannot_create_for_other_branch(
        self, branch_caller, other_branch_caller, branch_b, approved_request
    ):
        with pytest.raises(AuthorizationError):
            delivery_service.create_delivery(_fields(branch_id=branch_b.id), branch_caller)
        with pytest.raises(AuthorizationError):
            delivery_service.create_delivery(
                _fields(request_id=approved_request["id"]), other_branch_caller
            )

    def test_inputs_are_trimmed_to_column_lengths(self, warehouse):
        created = delivery_service.create_delivery(
            _fields(recipient_name="  " + "N" * 150, recipient_phone="0" * 40), warehouse
        )
        assert created["recipient_name"] == "N" * 100
        assert created["recipient_phone"] == "0" * 20

    @pytest.mark.parametrize("missing", ["recipient_name", "recipient_address"])
    def test_recipient_required(self, warehouse, missing):
        with pytest.raises(ValidationError):
            delivery_service.create_delivery(_fields(**{missing: "  "}), warehouse)

    def test_unknown_request(self, warehouse, db_session):
        with pytest.raises(ValidationError):
            delivery_service.create_delivery(_fields(request_id=987654), warehouse)

    def test_second_delivery_for_request_is_rejected(self, bound_delivery, approved_request, warehouse_2, db_session):
        with pytest.raises(ValidationError):
            delivery_service.create_delivery(_fields(request_id=approved_request["id"]), warehouse_2)
        assert db_session.query(Delivery).count() == 1

    def test_request_must_be_approved(self, make_request, warehouse, db_session):
        pending = make_request()
        with pytest.raises(PreconditionError):
            delivery_service.create_delivery(_fields(request_id=pending["id"]), warehouse)
        assert db_session.query(Delivery).count() == 0
        assert _request_status(db_session, pending["id"]) == "pending"

    def test_identity_collision(self, approved_request, warehouse, warehouse_user, db_session):
        db_session.add(Delivery(
            id=approved_request["id"],
            tracking_number="SBN-000001-0001",
            recipient_name="Someone",
            recipient_address="Somewhere",
            status="pending",
            created_by=warehouse_user.id,
        ))
        db_session.commit()

        with pytest.raises(ConflictError) as exc_info:
            delivery_service.create_delivery(_fields(request_id=approved_request["id"]), warehouse)
        assert exc_info.value.details["field"] == "id"
        assert _request_status(db_session, approved_request["id"]) == "approved"

    def test_tracking_number_collision(self, warehouse, db_session, monkeypatch):
        monkeypatch.setattr(
            delivery_service, "generate_tracking_number", lambda request_id=None: "SBN-123456-0001"
        )
        delivery_service.create_delivery(_fields(), warehouse)

        with pytest.raises(ConflictError) as exc_info:
            delivery_service.create_delivery(_fields(), warehouse)
        assert exc_info.value.details["field"] == "tracking_number"
        assert db_session.query(Delivery).count() == 1


# =============================================================================
# STATUS TRANSITIONS
# =============================================================================


class TestUpdateDeliveryStatus:

    def test_walks_forward_and_stamps_receipt(self, bound_delivery, warehouse, warehouse_user, db_session):
        did = bound_delivery["id"]
        for status in ("preparing", "loading", "in_transit"):
            updated = delivery_service.update_delivery_status(did, status, warehouse)
            assert updated["status"] == status
            assert updated["received_at"] is None
            assert _request_status(db_session, did) == "processing"

        delivered = delivery_service.update_delivery_status(did, "delivered", warehouse)
        assert delivered["status"] == "delivered"
        assert delivered["received_at"] is not None
        assert delivered["received_by"] == warehouse_user.id
        assert _request_status(db_session, did) == "delivered"

    def test_forward_skip_is_allowed(self, bound_delivery, warehouse):
        updated = delivery_service.update_delivery_status(bound_delivery["id"], "in_transit", warehouse)
        assert updated["status"] == "in_transit"

    def test_same_status_is_noop(self, bound_delivery, warehouse):
        delivery_service.update_delivery_status(bound_delivery["id"], "loading", warehouse)
        again = delivery_service.update_delivery_status(bound_delivery["id"], "loading", warehouse)
        assert again["status"] == "loading"

    def test_backward_is_rejected(self, bound_delivery, warehouse):
        delivery_service.update_delivery_status(bound_delivery["id"], "in_transit", warehouse)
        with pytest.raises(PreconditionError):
            delivery_service.update_delivery_status(bound_delivery["id"], "preparing", warehouse)

    def test_delivered_is_final(self, bound_delivery, warehouse):
        delivery_service.update_delivery_status(bound_delivery["id"], "delivered", warehouse)
        with pytest.raises(PreconditionError):
            delivery_service.update_delivery_status(bound_delivery["id"], "in_transit", warehouse)

    def test_cancel_only_through_archive(self, bound_delivery, warehouse):
        with pytest.raises(PreconditionError):
            delivery_service.update_delivery_status(bound_delivery["id"], "cancelled", warehouse)

    @pytest.mark.parametrize("status", [None, "", "lost"])
    def test_invalid_status(self, bound_delivery, warehouse, status):
        with pytest.raises(ValidationError):
            delivery_service.update_delivery_status(bound_delivery["id"], status, warehouse)

    def test_branch_user_cannot_advance(self, bound_delivery, branch_caller):
        with pytest.raises(AuthorizationError):
            delivery_service.update_delivery_status(bound_delivery["id"], "preparing", branch_caller)

    def test_missing_delivery(self, warehouse, db_session):
        with pytest.raises(NotFoundError):
            delivery_service.update_delivery_status(55555, "preparing", warehouse)

    def test_propagation_failure_keeps_delivery_change(
        self, bound_delivery, warehouse, db_session, monkeypatch, caplog
    ):
        did = bound_delivery["id"]
        db_session.query(DeliveryRequest).filter_by(id=did).update({"request_status": "approved"})
        db_session.commit()

        def _broken_clock():
            raise OperationalError("UPDATE delivery_requests", {}, Exception("database is locked"))

        monkeypatch.setattr(delivery_service, "utcnow", _broken_clock)
        with caplog.at_level(logging.WARNING):
            updated = delivery_service.update_delivery_status(did, "in_transit", warehouse)

        assert updated["status"] == "in_transit"
        assert _request_status(db_session, did) == "approved"
        assert "Failed to propagate" in caplog.text

        monkeypatch.undo()
        assert delivery_service.reconcile_request_statuses() == 1
        assert _request_status(db_session, did) == "processing"


class TestReconcile:

    def test_repairs_lagging_request(self, bound_delivery, warehouse, db_session):
        did = bound_delivery["id"]
        delivery_service.update_delivery_status(did, "delivered", warehouse)
        db_session.query(DeliveryRequest).filter_by(id=did).update(
            {"request_status": "processing", "delivery_id": None}
        )
        db_session.commit()

        assert delivery_service.reconcile_request_statuses() == 1
        db_session.expire_all()
        request = db_session.get(DeliveryRequest, did)
        assert request.request_status == "delivered"
        assert request.delivery_id == did

    def test_nothing_to_fix(self, bound_delivery):
        assert delivery_service.reconcile_request_statuses() == 0


# =============================================================================
# FULL UPDATE
# =============================================================================


class TestUpdateDelivery:

    def test_replaces_fields(self, bound_delivery, branch_caller):
        updated = delivery_service.update_delivery(
            bound_delivery["id"],
            _fields(
                tracking_number=bound_delivery["tracking_number"],
                recipient_name="New Name",
                recipient_phone=None,
                status="pending",
            ),
            branch_caller,
        )
        assert updated["recipient_name"] == "New Name"
        assert updated["recipient_phone"] is None
        assert updated["status"] == "pending"

    def test_unknown_status_defaults_to_pending(self, bound_delivery, warehouse):
        updated = delivery_service.update_delivery(
            bound_delivery["id"],
            _fields(tracking_number="TRK-EDITED", status="teleported"),
            warehouse,
        )
        assert updated["status"] == "pending"
        assert updated["tracking_number"] == "TRK-EDITED"

    def test_status_change_goes_through_transition_rules(self, bound_delivery, warehouse, db_session):
        did = bound_delivery["id"]
        updated = delivery_service.update_delivery(
            did, _fields(tracking_number=bound_delivery["tracking_number"], status="delivered"), warehouse
        )
        assert updated["received_at"] is not None
        assert _request_status(db_session, did) == "delivered"

        with pytest.raises(PreconditionError):
            delivery_service.update_delivery(
                did, _fields(tracking_number=bound_delivery["tracking_number"], status="loading"), warehouse
            )

    def test_required_fields(self, bound_delivery, warehouse):
        with pytest.raises(ValidationError):
            delivery_service.update_delivery(bound_delivery["id"], _fields(), warehouse)

    def test_tracking_number_collision(self, bound_delivery, warehouse):
        other = delivery_service.create_delivery(_fields(), warehouse)
        with pytest.raises(ConflictError):
            delivery_service.update_delivery(
                other["id"], _fields(tracking_number=bound_delivery["tracking_number"]), warehouse
            )

    def test_missing_delivery(self, warehouse, db_session):
        with pytest.raises(NotFoundError):
            delivery_service.update_delivery(4040, _fields(tracking_number="X-1"), warehouse)

    def test_branch_is_kept_when_omitted(self, bound_delivery, warehouse, branch_a):
        updated = delivery_service.update_delivery(
            bound_delivery["id"], _fields(tracking_number=bound_delivery["tracking_number"]), warehouse
        )
        assert updated["branch_id"] == branch_a.id

    def test_other_branch_cannot_edit(self, bound_delivery, other_branch_caller):
        with pytest.raises(AuthorizationError):
            delivery_service.update_delivery(
                bound_delivery["id"],
                _fields(tracking_number=bound_delivery["tracking_number"]),
                other_branch_caller,
            )


# =============================================================================
# RECEIPT / ARCHIVE / LISTING
# =============================================================================


class TestConfirmReceipt:

    def test_branch_confirms_in_transit(self, bound_delivery, warehouse, branch_caller, db_session):
        did = bound_delivery["id"]
        delivery_service.update_delivery_status(did, "in_transit", warehouse)

        confirmed = delivery_service.confirm_receipt(did, branch_caller)
        assert confirmed["status"] == "delivered"
        assert confirmed["received_by"] == branch_caller.user_id
        assert _request_status(db_session, did) == "delivered"

    def test_requires_in_transit(self, bound_delivery, branch_caller):
        with pytest.raises(PreconditionError):
            delivery_service.confirm_receipt(bound_delivery["id"], branch_caller)

    def test_second_confirmation_fails_and_keeps_receipt(self, bound_delivery, warehouse, branch_caller, admin):
        did = bound_delivery["id"]
        delivery_service.update_delivery_status(did, "in_transit", warehouse)
        first = delivery_service.confirm_receipt(did, branch_caller)

        with pytest.raises(PreconditionError) as exc_info:
            delivery_service.confirm_receipt(did, admin)
        assert exc_info.value.details["currentStatus"] == "delivered"

        after = delivery_service.get_delivery(did, admin)
        assert after["received_at"] == first["received_at"]
        assert after["received_by"] == branch_caller.user_id

    def test_warehouse_cannot_confirm(self, bound_delivery, warehouse):
        delivery_service.update_delivery_status(bound_delivery["id"], "in_transit", warehouse)
        with pytest.raises(AuthorizationError):
            delivery_service.confirm_receipt(bound_delivery["id"], warehouse)

    def test_other_branch_cannot_confirm(self, bound_delivery, warehouse, other_branch_caller):
        delivery_service.update_delivery_status(bound_delivery["id"], "in_transit", warehouse)
        with pytest.raises(AuthorizationError):
            delivery_service.confirm_receipt(bound_delivery["id"], other_branch_caller)

    def test_admin_confirms_any_branch(self, bound_delivery, warehouse, admin):
        delivery_service.update_delivery_status(bound_delivery["id"], "in_transit", warehouse)
        assert delivery_service.confirm_receipt(bound_delivery["id"], admin)["status"] == "delivered"


class TestArchiveDelivery:

    def test_archive_cancels_open_delivery(self, bound_delivery, warehouse):
        archived = delivery_service.archive_delivery(bound_delivery["id"], warehouse)
        assert archived["is_archived"] is True
        assert archived["status"] == "cancelled"

    def test_archive_keeps_delivered_status(self, bound_delivery, warehouse):
        delivery_service.update_delivery_status(bound_delivery["id"], "delivered", warehouse)
        archived = delivery_service.archive_delivery(bound_delivery["id"], warehouse)
        assert archived["status"] == "delivered"
        assert archived["received_at"] is not None

    def test_archive_is_idempotent(self, bound_delivery, warehouse, admin):
        first = delivery_service.archive_delivery(bound_delivery["id"], warehouse)
        second = delivery_service.archive_delivery(bound_delivery["id"], admin)
        assert second["archived_by"] == first["archived_by"]

    def test_archived_delivery_cannot_move(self, bound_delivery, warehouse):
        delivery_service.archive_delivery(bound_delivery["id"], warehouse)
        with pytest.raises(PreconditionError):
            delivery_service.update_delivery_status(bound_delivery["id"], "in_transit", warehouse)


class TestListDeliveries:

    def test_archived_hidden_by_default(self, bound_delivery, warehouse):
        delivery_service.archive_delivery(bound_delivery["id"], warehouse)
        assert delivery_service.list_deliveries(warehouse) == []
        archived = delivery_service.list_deliveries(warehouse, DeliveryFilters(archived_only=True))
        assert [d["id"] for d in archived] == [bound_delivery["id"]]

    def test_branch_user_pinned_to_own_branch(self, bound_delivery, other_branch_caller, branch_caller, branch_a):
        assert delivery_service.list_deliveries(other_branch_caller, DeliveryFilters(branch_id=branch_a.id)) == []
        own = delivery_service.list_deliveries(branch_caller)
        assert [d["id"] for d in own] == [bound_delivery["id"]]

    def test_ongoing_filter(self, bound_delivery, warehouse):
        delivery_service.update_delivery_status(bound_delivery["id"], "delivered", warehouse)
        assert delivery_service.list_deliveries(warehouse, DeliveryFilters(ongoing=True)) == []
        assert len(delivery_service.list_deliveries(warehouse)) == 1

    def test_get_is_branch_scoped(self, bound_delivery, branch_caller, other_branch_caller):
        assert delivery_service.get_delivery(bound_delivery["id"], branch_caller)["id"] == bound_delivery["id"]
        with pytest.raises(AuthorizationError):
            delivery_service.get_delivery(bound_delivery["id"], other_branch_caller)

    def test_get_missing(self, warehouse, db_session):
        with pytest.raises(NotFoundError):
            delivery_service.get_delivery(777, warehouse)
