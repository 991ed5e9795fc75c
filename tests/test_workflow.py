"""Tests for the change-approval workflow commands."""

from datetime import datetime, timezone

import pytest

from pipelinehub.core.results import ErrorCode, ServiceError
from pipelinehub.models.pipeline import EntryStatus
from pipelinehub.models.workflow import RequestStatus, RequestType
from pipelinehub.services import workflow_service

WHEN = datetime(2025, 3, 1, 9, 30, tzinfo=timezone.utc)


def _ok(result):
    assert result.is_success, result.error
    return result.data


def test_non_admin_edit_files_a_change_request(pipeline_state, planner):
    outcome = _ok(
        workflow_service.apply_edit(
            pipeline_state, planner, "P0001-25", {"totalFees": 15000}, "Client expanded scope", when=WHEN
        )
    )
    request = outcome.request

    assert request.type == RequestType.CHANGE
    assert request.status == RequestStatus.PENDING
    assert request.requestedBy == "pm@example.com"
    assert request.originalEntry.totalFees == 12000
    assert request.requestedChanges.totalFees == 15000
    assert outcome.state.find_entry("P0001-25").totalFees == 12000
    assert pipeline_state.changeRequests == []


def test_non_admin_edit_needs_a_comment(pipeline_state, planner):
    result = workflow_service.apply_edit(pipeline_state, planner, "P0001-25", {"totalFees": 15000}, "  ")

    assert result.error.code == ErrorCode.VALIDATION_ERROR
    assert result.error.field == "comment"


def test_admin_edit_applies_directly(pipeline_state, admin):
    outcome = _ok(workflow_service.apply_edit(pipeline_state, admin, "P0001-25", {"client": "Acme Foods"}, when=WHEN))
    entry = outcome.state.find_entry("P0001-25")

    assert entry.client == "Acme Foods"
    assert entry.updatedBy == "admin@example.com"
    assert outcome.request is None
    assert outcome.state.auditLog[0].type == "change"
    assert "client" in outcome.state.auditLog[0].description


def test_department_split_recomputes_total(pipeline_state, admin):
    outcome = _ok(workflow_service.apply_edit(pipeline_state, admin, "P0001-25", {"creative": 5000, "design": 3000}))

    assert outcome.state.find_entry("P0001-25").totalFees == 8000


def test_editing_a_date_moves_its_month_label(pipeline_state, admin):
    outcome = _ok(workflow_service.apply_edit(pipeline_state, admin, "P0001-25", {"endDate": "2025-09-30"}))

    assert outcome.state.find_entry("P0001-25").endMonth == "Sep 2025"


def test_confirmed_entries_cannot_be_edited(pipeline_state, admin, planner):
    for actor in (admin, planner):
        result = workflow_service.apply_edit(pipeline_state, actor, "P0002-25", {"totalFees": 1}, "fix")
        assert result.error.code == ErrorCode.ENTRY_CONFIRMED


def test_month_lock_is_checked_before_confirmation(pipeline_state, admin):
    locked = pipeline_state.model_copy(update={"monthLocks": {1: True}})

    result = workflow_service.apply_edit(locked, admin, "P0002-25", {"totalFees": 1})

    assert result.error.code == ErrorCode.MONTH_LOCKED


def test_month_lock_blocks_unconfirmed_entries_too(pipeline_state, admin):
    locked = pipeline_state.model_copy(update={"monthLocks": {0: True}})

    assert workflow_service.apply_edit(locked, admin, "P0001-25", {"client": "X"}).error.code == ErrorCode.MONTH_LOCKED
    assert workflow_service.delete_entry(locked, admin, "P0001-25", True).error.code == ErrorCode.MONTH_LOCKED


@pytest.mark.parametrize(
    "changes,code",
    [
        ({"projectCode": "P9999-25"}, ErrorCode.VALIDATION_ERROR),
        ({"status": "confirmed"}, ErrorCode.INVALID_STATE),
        ({"nickname": "x"}, ErrorCode.VALIDATION_ERROR),
        ({"owner": ""}, ErrorCode.VALIDATION_ERROR),
        ({"endDate": "2024-01-31"}, ErrorCode.VALIDATION_ERROR),
        ({"totalFees": "lots"}, ErrorCode.VALIDATION_ERROR),
    ],
)
def test_bad_edits_are_refused(pipeline_state, admin, changes, code):
    result = workflow_service.apply_edit(pipeline_state, admin, "P0001-25", changes)

    assert result.error.code == code


def test_unknown_entry(pipeline_state, admin):
    assert workflow_service.apply_edit(pipeline_state, admin, "P0404-25", {}).error.code == ErrorCode.NOT_FOUND


def test_approving_a_change_applies_it(pipeline_state, planner, admin):
    filed = _ok(workflow_service.apply_edit(pipeline_state, planner, "P0001-25", {"totalFees": 15000}, "Scope grew"))

    approved = _ok(workflow_service.approve_request(filed.state, admin, filed.request.id, "Looks right", when=WHEN))

    assert approved.state.find_entry("P0001-25").totalFees == 15000
    assert approved.request.status == RequestStatus.APPROVED
    assert approved.request.reviewedBy == "admin@example.com"
    assert approved.request.reviewComments == "Looks right"
    assert approved.state.auditLog[0].description == "Change approved: Scope grew"
    assert approved.state.pending_requests() == []


def test_rejecting_a_change_leaves_entry_alone(pipeline_state, planner, admin):
    filed = _ok(workflow_service.apply_edit(pipeline_state, planner, "P0001-25", {"totalFees": 15000}, "Scope grew"))

    rejected = _ok(workflow_service.reject_request(filed.state, admin, filed.request.id, "Not yet"))

    assert rejected.state.find_entry("P0001-25") == pipeline_state.find_entry("P0001-25")
    assert rejected.request.status == RequestStatus.REJECTED


def test_only_admins_review_requests(pipeline_state, planner):
    filed = _ok(workflow_service.apply_edit(pipeline_state, planner, "P0001-25", {"totalFees": 15000}, "Scope grew"))

    result = workflow_service.approve_request(filed.state, planner, filed.request.id)

    assert result.error.code == ErrorCode.INSUFFICIENT_PERMISSIONS


def test_reviewed_requests_are_final(pipeline_state, planner, admin):
    filed = _ok(workflow_service.apply_edit(pipeline_state, planner, "P0001-25", {"totalFees": 15000}, "Scope grew"))
    approved = _ok(workflow_service.approve_request(filed.state, admin, filed.request.id))

    assert workflow_service.reject_request(approved.state, admin, filed.request.id).error.code == ErrorCode.INVALID_STATE
    assert workflow_service.approve_request(approved.state, admin, "missing").error.code == ErrorCode.NOT_FOUND


def test_finance_review_round_trip_confirms_entry(pipeline_state, planner, admin):
    submitted = _ok(
        workflow_service.submit_finance_review(
            pipeline_state, planner, "P0001-25", {"totalFees": 13000}, "Signed SOW attached"
        )
    )

    assert submitted.state.find_entry("P0001-25").status == EntryStatus.FINANCE_REVIEW
    assert submitted.request.type == RequestType.FINANCE_REVIEW
    assert submitted.request.originalEntry.status == EntryStatus.OPEN

    approved = _ok(workflow_service.approve_request(submitted.state, admin, submitted.request.id))
    entry = approved.state.find_entry("P0001-25")

    assert entry.status == EntryStatus.CONFIRMED
    assert entry.totalFees == 13000
    assert (
        workflow_service.apply_edit(approved.state, admin, "P0001-25", {"client": "X"}).error.code
        == ErrorCode.ENTRY_CONFIRMED
    )


def test_rejected_finance_review_reopens_entry(pipeline_state, planner, admin):
    high_pitch = "P0003-25"
    submitted = _ok(workflow_service.submit_finance_review(pipeline_state, planner, high_pitch, {}, "Ready"))

    rejected = _ok(workflow_service.reject_request(submitted.state, admin, submitted.request.id))

    assert rejected.state.find_entry(high_pitch).status == EntryStatus.OPEN


def test_finance_review_needs_a_comment(pipeline_state, admin):
    result = workflow_service.submit_finance_review(pipeline_state, admin, "P0001-25", {}, None)

    assert result.error.code == ErrorCode.VALIDATION_ERROR


def test_entry_under_review_cannot_be_resubmitted(pipeline_state, planner):
    submitted = _ok(workflow_service.submit_finance_review(pipeline_state, planner, "P0001-25", {}, "Ready"))

    again = workflow_service.request_deletion(submitted.state, planner, "P0001-25", "Changed my mind")

    assert again.error.code == ErrorCode.INVALID_STATE


def test_deletion_request_then_approval_removes_entry(pipeline_state, planner, admin):
    with_override = _ok(workflow_service.set_monthly_override(pipeline_state, admin, "P0001-25", "Mar", 100)).state
    requested = _ok(workflow_service.request_deletion(with_override, planner, "P0001-25", "Client walked"))

    assert requested.state.find_entry("P0001-25").status == EntryStatus.PENDING_DELETION
    assert requested.request.requestedChanges is None

    approved = _ok(workflow_service.approve_request(requested.state, admin, requested.request.id))

    assert approved.state.find_entry("P0001-25") is None
    assert approved.purgedCode == "P0001-25"
    assert "P0001-25" not in approved.state.monthlyOverrides
    assert approved.state.auditLog[0].type == "deletion"
    assert approved.request.status == RequestStatus.APPROVED


def test_rejected_deletion_restores_open(pipeline_state, planner, admin):
    requested = _ok(workflow_service.request_deletion(pipeline_state, planner, "P0003-25", "Lost pitch"))

    rejected = _ok(workflow_service.reject_request(requested.state, admin, requested.request.id))

    assert rejected.state.find_entry("P0003-25").status == EntryStatus.OPEN


def test_direct_delete_rules(pipeline_state, admin, planner):
    assert workflow_service.delete_entry(pipeline_state, planner, "P0001-25", True).error.code == (
        ErrorCode.INSUFFICIENT_PERMISSIONS
    )
    assert workflow_service.delete_entry(pipeline_state, admin, "P0001-25", False).error.code == (
        ErrorCode.CONFIRMATION_REQUIRED
    )
    assert workflow_service.delete_entry(pipeline_state, admin, "P0002-25", True).error.code == (
        ErrorCode.ENTRY_CONFIRMED
    )


def test_direct_delete_rejects_pending_requests(pipeline_state, planner, admin):
    filed = _ok(workflow_service.apply_edit(pipeline_state, planner, "P0001-25", {"totalFees": 1}, "typo"))

    deleted = _ok(workflow_service.delete_entry(filed.state, admin, "P0001-25", True))

    assert deleted.state.find_entry("P0001-25") is None
    assert deleted.purgedCode == "P0001-25"
    request = deleted.state.find_request(filed.request.id)
    assert request.status == RequestStatus.REJECTED
    assert request.reviewComments == "Entry deleted"


def test_add_entry_assigns_next_code(pipeline_state, planner, make_entry):
    outcome = _ok(workflow_service.add_entry(pipeline_state, planner, make_entry(None, client="Gamma"), when=WHEN))

    assert outcome.entry.projectCode == "P0004-25"
    assert outcome.entry.createdBy == "pm@example.com"
    assert outcome.state.projectCounter == 5
    assert outcome.state.auditLog[0].type == "addition"


def test_add_entry_repairs_code_collisions(pipeline_state, admin, make_entry):
    outcome = _ok(workflow_service.add_entry(pipeline_state, admin, make_entry("P0002-25")))

    codes = [e.projectCode for e in outcome.state.entries]
    assert outcome.entry.projectCode == "P0004-25"
    assert len(codes) == len(set(codes))


def test_add_entry_keeps_counter_ahead_of_supplied_code(pipeline_state, admin, make_entry):
    outcome = _ok(workflow_service.add_entry(pipeline_state, admin, make_entry("P0020-25")))

    assert outcome.state.projectCounter == 21


def test_add_entry_validation(pipeline_state, admin, make_entry):
    assert workflow_service.add_entry(pipeline_state, admin, make_entry(None, owner="")).error.code == (
        ErrorCode.VALIDATION_ERROR
    )
    assert workflow_service.add_entry(pipeline_state, admin, make_entry(None, startDate=None)).error.code == (
        ErrorCode.VALIDATION_ERROR
    )
    assert workflow_service.add_entry(pipeline_state, admin, make_entry(None, status="confirmed")).error.code == (
        ErrorCode.INVALID_STATE
    )


def test_overrides_set_and_clear(pipeline_state, admin):
    set_state = _ok(workflow_service.set_monthly_override(pipeline_state, admin, "P0001-25", "march", 5000)).state
    cleared = _ok(workflow_service.set_monthly_override(set_state, admin, "P0001-25", "Mar", None)).state

    assert set_state.monthlyOverrides == {"P0001-25": {"Mar": 5000.0}}
    assert cleared.monthlyOverrides == {}


@pytest.mark.parametrize(
    "month,amount,code",
    [
        ("Mar", -1, ErrorCode.VALIDATION_ERROR),
        ("Marchember", 10, ErrorCode.VALIDATION_ERROR),
    ],
)
def test_bad_overrides_are_refused(pipeline_state, admin, month, amount, code):
    assert workflow_service.set_monthly_override(pipeline_state, admin, "P0001-25", month, amount).error.code == code


def test_overrides_are_admin_only(pipeline_state, planner):
    result = workflow_service.set_monthly_override(pipeline_state, planner, "P0001-25", "Mar", 10)

    assert result.error.code == ErrorCode.INSUFFICIENT_PERMISSIONS


def test_refused_command_leaves_state_untouched(pipeline_state, planner):
    before = pipeline_state.model_dump()

    workflow_service.apply_edit(pipeline_state, planner, "P0002-25", {"totalFees": 1}, "typo")
    workflow_service.submit_finance_review(pipeline_state, planner, "P0001-25", {"endDate": "2020-01-01"}, "x")

    assert pipeline_state.model_dump() == before


def test_clear_override_by_month_alias(pipeline_state, admin):
    set_state = _ok(workflow_service.set_monthly_override(pipeline_state, admin, "P0001-25", "Jan", 10)).state

    cleared = _ok(workflow_service.clear_monthly_override(set_state, admin, "P0001-25", "january")).state

    assert cleared.monthlyOverrides == {}


def test_change_approval_is_held_while_finance_review_is_pending(pipeline_state, planner, admin):
    filed = _ok(workflow_service.apply_edit(pipeline_state, planner, "P0001-25", {"totalFees": 15000}, "Scope grew"))
    in_review = _ok(workflow_service.submit_finance_review(filed.state, planner, "P0001-25", {}, "SOW signed"))

    held = workflow_service.approve_request(in_review.state, admin, filed.request.id)

    assert held.error.code == ErrorCode.INVALID_STATE
    assert in_review.state.find_entry("P0001-25").status == EntryStatus.FINANCE_REVIEW


def test_change_approval_keeps_edits_made_since_filing(pipeline_state, planner, admin):
    filed = _ok(workflow_service.apply_edit(pipeline_state, planner, "P0001-25", {"totalFees": 15000}, "Scope grew"))
    edited = _ok(workflow_service.apply_edit(filed.state, admin, "P0001-25", {"client": "Acme Foods"}))

    approved = _ok(workflow_service.approve_request(edited.state, admin, filed.request.id))
    entry = approved.state.find_entry("P0001-25")

    assert entry.totalFees == 15000
    assert entry.client == "Acme Foods"
    assert entry.status == EntryStatus.OPEN


def test_finance_review_approval_applies_only_its_own_changes(pipeline_state, planner, admin):
    submitted = _ok(workflow_service.submit_finance_review(pipeline_state, planner, "P0001-25", {"owner": "Jo"}, "Ready"))

    approved = _ok(workflow_service.approve_request(submitted.state, admin, submitted.request.id))
    entry = approved.state.find_entry("P0001-25")

    assert entry.owner == "Jo"
    assert entry.totalFees == 12000
    assert entry.status == EntryStatus.CONFIRMED


@pytest.mark.parametrize("changes", [{"status": "open"}, {"client": "Acme Foods"}])
def test_entry_pending_deletion_cannot_be_edited(pipeline_state, planner, admin, changes):
    requested = _ok(workflow_service.request_deletion(pipeline_state, planner, "P0001-25", "Client walked"))

    for actor in (admin, planner):
        result = workflow_service.apply_edit(requested.state, actor, "P0001-25", changes, "reopen")
        assert result.error.code == ErrorCode.INVALID_STATE
    assert requested.state.pending_requests()[0].type == RequestType.DELETION


def test_month_lock_is_reported_before_role_for_delete_and_override(pipeline_state, planner):
    locked = pipeline_state.model_copy(update={"monthLocks": {0: True}})

    deleted = workflow_service.delete_entry(locked, planner, "P0001-25", True)
    overridden = workflow_service.set_monthly_override(locked, planner, "P0001-25", "Mar", 10)

    assert deleted.error.code == ErrorCode.MONTH_LOCKED
    assert overridden.error.code == ErrorCode.MONTH_LOCKED


def test_service_errors_default_to_their_own_details():
    first = ServiceError(ErrorCode.NOT_FOUND, "Pipeline entry not found")
    second = ServiceError(ErrorCode.MONTH_LOCKED, "Locked")
    first.details["resource_id"] = "P0404-25"

    assert second.details == {}
    assert first.to_dict()["details"] == {"resource_id": "P0404-25"}
    assert second.http_status == 423
