"""
Delivery request lifecycle tests.

Verifies:
- Creation rules (branch only, items validated, totals derived)
- Branch scoping on reads
- Exactly-once review decision with a conflict naming the winner
- Delete and archive rules
"""

from datetime import date

import pytest

from delivery_hub.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    PreconditionError,
    ValidationError,
)
from delivery_hub.models import DeliveryRequest, DeliveryRequestItem, RequestProcessing
from delivery_hub.services import processing_service, request_service
from delivery_hub.services.query_filters import DateWindow, build_date_window


# =============================================================================
# CREATE
# =============================================================================


class TestCreateRequest:

    def test_creates_pending_request_with_items(self, make_request, branch_a, branch_user):
        created = make_request(priority="high", notes="  urgent  ", delivery_date="2026-11-02")

        assert created["request_status"] == "pending"
        assert created["branch_id"] == branch_a.id
        assert created["branch_name"] == "Branch A"
        assert created["username"] == branch_user.username
        assert created["priority"] == "high"
        assert created["notes"] == "urgent"
        assert created["delivery_date"] == "2026-11-02"
        assert len(created["items"]) == 2
        assert [item["subtotal"] for item in created["items"]] == [30.0, 5.0]

    def test_total_defaults_to_sum_of_subtotals(self, make_request):
        assert make_request()["total_amount"] == 35.0

    def test_explicit_total_is_stored_as_given(self, make_request):
        assert make_request(total_amount="99.50")["total_amount"] == 99.5

    def test_explicit_subtotal_is_kept(self, make_request):
        created = make_request(items=[
            {"description": "Chairs", "unit": "pc", "quantity": 4, "unit_price": 10, "subtotal": 36},
        ])
        assert created["items"][0]["subtotal"] == 36.0
        assert created["total_amount"] == 36.0

    def test_priority_defaults_to_medium(self, make_request):
        assert make_request()["priority"] == "medium"

    @pytest.mark.parametrize("caller_fixture", ["warehouse", "admin"])
    def test_only_branch_users_can_create(self, request, make_request, caller_fixture):
        caller = request.getfixturevalue(caller_fixture)
        with pytest.raises(AuthorizationError):
            make_request(caller=caller)

    @pytest.mark.parametrize(
        "items",
        [
            [],
            None,
            [{"description": "Tape", "unit": "roll", "quantity": 0, "unit_price": 1}],
            [{"description": "Tape", "unit": "roll", "quantity": 2, "unit_price": -1}],
            [{"description": "", "unit": "roll", "quantity": 2, "unit_price": 1}],
            [{"description": "Tape", "quantity": 2, "unit_price": 1}],
            [{"description": "Tape", "unit": "roll", "quantity": "lots", "unit_price": 1}],
            [{"description": "Tape", "unit": "roll", "quantity": "1e30", "unit_price": 1}],
            [{"description": "Tape", "unit": "roll", "quantity": 1, "unit_price": "1e30"}],
            [{"description": "Tape", "unit": "roll", "quantity": 1, "unit_price": 1, "subtotal": "1e30"}],
            ["not an object"],
        ],
    )
    def test_rejects_invalid_items(self, branch_caller, items):
        with pytest.raises(ValidationError):
            request_service.create_request(branch_caller, items)

    def test_rejects_unknown_priority(self, make_request):
        with pytest.raises(ValidationError):
            make_request(priority="critical")

    def test_rejects_bad_delivery_date(self, make_request):
        with pytest.raises(ValidationError):
            make_request(delivery_date="next tuesday")

    def test_failed_create_writes_nothing(self, branch_caller, db_session):
        with pytest.raises(ValidationError):
            request_service.create_request(branch_caller, [
                {"description": "Good", "unit": "pc", "quantity": 1, "unit_price": 1},
                {"description": "Bad", "unit": "pc", "quantity": -1, "unit_price": 1},
            ])
        assert db_session.query(DeliveryRequest).count() == 0
        assert db_session.query(DeliveryRequestItem).count() == 0


# =============================================================================
# READ
# =============================================================================


class TestReadRequests:

    def test_get_returns_items(self, make_request, warehouse):
        created = make_request()
        fetched = request_service.get_request(created["id"], warehouse)
        assert fetched["id"] == created["id"]
        assert len(fetched["items"]) == 2

    def test_get_missing_request(self, warehouse, db_session):
        with pytest.raises(NotFoundError):
            request_service.get_request(999999, warehouse)

    def test_branch_user_cannot_read_other_branch(self, make_request, other_branch_caller):
        created = make_request()
        with pytest.raises(AuthorizationError):
            request_service.get_request(created["id"], other_branch_caller)

    def test_list_scopes_branch_users(self, make_request, branch_caller, other_branch_caller, branch_b):
        make_request()
        make_request(caller=other_branch_caller)

        own = request_service.list_requests(branch_caller, branch_id=branch_b.id)
        assert len(own) == 1
        assert own[0]["branch_id"] == branch_caller.branch_id

    def test_list_staff_sees_all_or_filters(self, make_request, other_branch_caller, warehouse, branch_b):
        make_request()
        make_request(caller=other_branch_caller)

        assert len(request_service.list_requests(warehouse)) == 2
        filtered = request_service.list_requests(warehouse, branch_id=branch_b.id)
        assert [r["branch_id"] for r in filtered] == [branch_b.id]

    def test_list_is_newest_first(self, make_request, warehouse):
        first = make_request()
        second = make_request()
        ids = [r["id"] for r in request_service.list_requests(warehouse)]
        assert ids == [second["id"], first["id"]]

    def test_list_ongoing_excludes_finished(self, make_request, warehouse):
        kept = make_request()
        rejected = make_request()
        request_service.update_request_status(rejected["id"], "rejected", warehouse, reason="Out of stock")

        ongoing = request_service.list_requests(warehouse, ongoing=True)
        assert [r["id"] for r in ongoing] == [kept["id"]]


# =============================================================================
# REVIEW DECISION
# =============================================================================


class TestUpdateRequestStatus:

    def test_approve_records_processor(self, make_request, warehouse, warehouse_user):
        created = make_request()
        updated = request_service.update_request_status(created["id"], "approved", warehouse)

        assert updated["request_status"] == "approved"
        assert updated["processed_by"] == warehouse_user.id
        assert updated["processor_username"] == warehouse_user.username

    def test_reject_requires_reason(self, make_request, warehouse):
        created = make_request()
        with pytest.raises(ValidationError):
            request_service.update_request_status(created["id"], "rejected", warehouse)
        with pytest.raises(ValidationError):
            request_service.update_request_status(created["id"], "rejected", warehouse, reason="   ")

    def test_reject_persists_reason(self, make_request, admin):
        created = make_request()
        updated = request_service.update_request_status(
            created["id"], "rejected", admin, reason="Duplicate request"
        )
        assert updated["request_status"] == "rejected"
        assert updated["reason"] == "Duplicate request"

    def test_second_decision_conflicts_and_names_winner(self, make_request, warehouse, warehouse_2, warehouse_user):
        created = make_request()
        request_service.update_request_status(created["id"], "approved", warehouse)

        with pytest.raises(ConflictError) as exc_info:
            request_service.update_request_status(created["id"], "rejected", warehouse_2, reason="Too late")

        error = exc_info.value
        assert error.details["currentStatus"] == "approved"
        assert error.details["processorUsername"] == warehouse_user.username
        assert warehouse_user.username in error.message

        still = request_service.get_request(created["id"], warehouse_2)
        assert still["request_status"] == "approved"
        assert still["reason"] is None

    def test_same_decision_twice_also_conflicts(self, make_request, warehouse):
        created = make_request()
        request_service.update_request_status(created["id"], "approved", warehouse)
        with pytest.raises(ConflictError):
            request_service.update_request_status(created["id"], "approved", warehouse)

    def test_pending_cannot_skip_review(self, make_request, warehouse):
        created = make_request()
        with pytest.raises(PreconditionError):
            request_service.update_request_status(created["id"], "delivered", warehouse)

    def test_invalid_status_value(self, make_request, warehouse):
        created = make_request()
        with pytest.raises(ValidationError):
            request_service.update_request_status(created["id"], "shipped", warehouse)
        with pytest.raises(ValidationError):
            request_service.update_request_status(created["id"], None, warehouse)

    def test_branch_user_cannot_decide(self, make_request, branch_caller):
        created = make_request()
        with pytest.raises(AuthorizationError):
            request_service.update_request_status(created["id"], "approved", branch_caller)

    def test_missing_request(self, warehouse, db_session):
        with pytest.raises(NotFoundError):
            request_service.update_request_status(424242, "approved", warehouse)


# =============================================================================
# DELETE / ARCHIVE
# =============================================================================


class TestDeleteRequest:

    def test_branch_user_deletes_own_pending(self, make_request, branch_caller, db_session):
        created = make_request()
        request_service.delete_request(created["id"], branch_caller)

        assert db_session.get(DeliveryRequest, created["id"]) is None
        assert db_session.query(DeliveryRequestItem).filter_by(request_id=created["id"]).count() == 0

    def test_branch_user_cannot_delete_other_branch(self, make_request, other_branch_caller):
        created = make_request()
        with pytest.raises(AuthorizationError):
            request_service.delete_request(created["id"], other_branch_caller)

    def test_branch_user_cannot_delete_after_review(self, approved_request, branch_caller):
        with pytest.raises(AuthorizationError):
            request_service.delete_request(approved_request["id"], branch_caller)

    def test_warehouse_cannot_delete(self, make_request, warehouse):
        created = make_request()
        with pytest.raises(AuthorizationError):
            request_service.delete_request(created["id"], warehouse)

    def test_admin_deletes_any_state_and_claims(self, approved_request, admin, warehouse, db_session):
        processing_service.claim_request(approved_request["id"], warehouse)
        request_service.delete_request(approved_request["id"], admin)

        assert db_session.get(DeliveryRequest, approved_request["id"]) is None
        assert db_session.query(RequestProcessing).count() == 0

    def test_delete_missing(self, admin, db_session):
        with pytest.raises(NotFoundError):
            request_service.delete_request(31337, admin)


class TestArchiveRequest:

    def test_archive_rejected_request(self, make_request, warehouse, branch_caller):
        created = make_request()
        request_service.update_request_status(created["id"], "rejected", warehouse, reason="No stock")

        archived = request_service.archive_request(created["id"], branch_caller)
        assert archived["is_archived"] is True
        assert archived["archived_by"] == branch_caller.user_id

        assert request_service.list_requests(warehouse) == []
        assert len(request_service.list_requests(warehouse, include_archived=True)) == 1

    def test_archive_is_idempotent(self, make_request, warehouse):
        created = make_request()
        request_service.update_request_status(created["id"], "rejected", warehouse, reason="No stock")
        first = request_service.archive_request(created["id"], warehouse)
        second = request_service.archive_request(created["id"], warehouse)
        assert first["archived_at"] == second["archived_at"]

    def test_cannot_archive_open_request(self, approved_request, warehouse):
        with pytest.raises(PreconditionError):
            request_service.archive_request(approved_request["id"], warehouse)

    def test_other_branch_cannot_archive(self, make_request, warehouse, other_branch_caller):
        created = make_request()
        request_service.update_request_status(created["id"], "rejected", warehouse, reason="No stock")
        with pytest.raises(AuthorizationError):
            request_service.archive_request(created["id"], other_branch_caller)


class TestArchivedListing:

    def test_lists_terminal_and_archived(self, make_request, warehouse):
        open_request = make_request()
        rejected = make_request()
        request_service.update_request_status(rejected["id"], "rejected", warehouse, reason="No stock")

        ids = [r["id"] for r in request_service.list_archived_requests(warehouse)]
        assert ids == [rejected["id"]]
        assert open_request["id"] not in ids

    def test_today_preset_includes_new_rows(self, make_request, warehouse):
        rejected = make_request()
        request_service.update_request_status(rejected["id"], "rejected", warehouse, reason="No stock")

        listed = request_service.list_archived_requests(warehouse, window=DateWindow(preset="today"))
        assert [r["id"] for r in listed] == [rejected["id"]]

    def test_custom_range_in_the_past_excludes_new_rows(self, make_request, warehouse):
        rejected = make_request()
        request_service.update_request_status(rejected["id"], "rejected", warehouse, reason="No stock")

        window = build_date_window(None, date(2020, 1, 1), date(2020, 1, 31))
        assert request_service.list_archived_requests(warehouse, window=window) == []

    def test_window_validation(self):
        with pytest.raises(ValidationError):
            build_date_window("last_year", None, None)
        with pytest.raises(ValidationError):
            build_date_window(None, date(2026, 2, 1), date(2026, 1, 1))
        assert build_date_window(None, date(2026, 1, 1), None) == DateWindow()
