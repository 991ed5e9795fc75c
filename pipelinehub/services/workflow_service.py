"""
Change workflow for pipeline entries.

Every command takes the current AppState and returns a ServiceResult whose
data is a WorkflowOutcome carrying the next state. The input state is never
modified, so a refused command leaves nothing half-applied.

Rules evaluated for every edit or delete, in order:
  1. the entry's start month is not locked
  2. the entry is not Confirmed
Entries awaiting a finance review or deletion take no other edits until
that review is resolved.
Admins apply edits directly; everyone else files a change request.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from pydantic import ValidationError

from ..core.results import ErrorCode, ServiceResult
from ..models.pipeline import EntryStatus, PipelineEntry, normalize_status
from ..models.user import AuthenticatedUser
from ..models.workflow import AppState, ChangeRequest, RequestStatus, RequestType, WorkflowOutcome
from .audit_log import record_change
from .fee_distribution import normalize_month_name
from .month_lock import is_entry_locked
from .project_codes import PROJECT_CODE_PATTERN, generate_unique

log = logging.getLogger(__name__)

REQUIRED_FIELDS = ("owner", "client", "programName")

# Statuses only the workflow itself may assign
WORKFLOW_STATUSES = {EntryStatus.CONFIRMED, EntryStatus.FINANCE_REVIEW, EntryStatus.PENDING_DELETION}
# Provisional statuses held while a review request is pending
REVIEW_STATUSES = (EntryStatus.FINANCE_REVIEW, EntryStatus.PENDING_DELETION)

_SYSTEM_FIELDS = {"projectCode", "createdBy", "createdAt", "updatedBy", "updatedAt"}
EDITABLE_FIELDS = set(PipelineEntry.model_fields) - _SYSTEM_FIELDS


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _refused(result: ServiceResult, command: str, project_code: Optional[str] = None) -> ServiceResult:
    log.info("%s refused for %s: %s", command, project_code or "-", result.error.code.value)
    return result


def validate_entry(entry: PipelineEntry) -> Optional[ServiceResult]:
    for field in REQUIRED_FIELDS:
        if not str(getattr(entry, field) or "").strip():
            return ServiceResult.validation_failure(f"{field} is required", field=field)
    if not entry.startDate:
        return ServiceResult.validation_failure("A valid start date is required", field="startDate")
    if not entry.endDate:
        return ServiceResult.validation_failure("A valid end date is required", field="endDate")
    if entry.endDate < entry.startDate:
        return ServiceResult.validation_failure("End date must not be before start date", field="endDate")
    return None


def with_computed_total(entry: PipelineEntry) -> PipelineEntry:
    """totalFees follows the department split whenever one has been entered."""
    total = entry.department_total()
    if total > 0 and total != entry.totalFees:
        return entry.model_copy(update={"totalFees": total})
    return entry


def _guard(state: AppState, entry: PipelineEntry) -> Optional[ServiceResult]:
    if is_entry_locked(state, entry):
        return ServiceResult.failure(
            ErrorCode.MONTH_LOCKED,
            f"{entry.projectCode} starts in a locked month and can no longer be changed",
        )
    if entry.status == EntryStatus.CONFIRMED:
        return ServiceResult.failure(
            ErrorCode.ENTRY_CONFIRMED,
            f"{entry.projectCode} is confirmed and can no longer be changed",
        )
    return None


def _awaiting_review(entry: PipelineEntry) -> Optional[ServiceResult]:
    if entry.status in REVIEW_STATUSES:
        return ServiceResult.failure(
            ErrorCode.INVALID_STATE,
            f"{entry.projectCode} is already awaiting review ({entry.status.value})",
        )
    return None


def _requested_fields(request: ChangeRequest) -> Dict[str, Any]:
    """Only the fields the requester actually changed, so later edits to other fields survive approval."""
    if request.requestedChanges is None:
        return {}
    before = request.originalEntry.model_dump()
    after = request.requestedChanges.model_dump()
    return {k: after[k] for k in EDITABLE_FIELDS if before.get(k) != after.get(k)}


def _require_comment(comment: Optional[str], action: str) -> Optional[ServiceResult]:
    if not (comment or "").strip():
        return ServiceResult.validation_failure(f"A comment is required to {action}", field="comment")
    return None


def merge_changes(entry: PipelineEntry, changes: Mapping[str, Any]) -> PipelineEntry:
    """
    Validate `changes` on top of `entry`.

    Raises ValueError for unknown or system fields and pydantic's
    ValidationError for bad values.
    """
    unknown = set(changes) - EDITABLE_FIELDS
    if unknown:
        raise ValueError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")
    data = entry.model_dump()
    data.update(changes)
    # Keep the date and its month label in step when only one of them was edited
    for date_field, label_field in (("startDate", "startMonth"), ("endDate", "endMonth")):
        if date_field in changes and label_field not in changes:
            data[label_field] = None
        elif label_field in changes and date_field not in changes:
            data[date_field] = None
    return PipelineEntry.model_validate(data)


def _prepare_changes(
    entry: PipelineEntry, changes: Mapping[str, Any]
) -> "tuple[Optional[PipelineEntry], Optional[ServiceResult]]":
    changes = dict(changes)
    code = changes.pop("projectCode", entry.projectCode)
    if code != entry.projectCode:
        return None, ServiceResult.validation_failure("projectCode cannot be changed", field="projectCode")
    for field in _SYSTEM_FIELDS & set(changes):
        changes.pop(field)
    if "status" in changes:
        status = normalize_status(changes["status"])
        if status in WORKFLOW_STATUSES and status != entry.status:
            return None, ServiceResult.failure(
                ErrorCode.INVALID_STATE,
                f"Status {status.value} can only be reached through the review workflow",
                field="status",
            )
    try:
        merged = merge_changes(entry, changes)
    except ValidationError as exc:
        return None, ServiceResult.validation_failure(str(exc.errors()[0].get("msg")), field="changes")
    except ValueError as exc:
        return None, ServiceResult.validation_failure(str(exc), field="changes")
    invalid = validate_entry(merged)
    if invalid:
        return None, invalid
    return merged, None


def _replace_entry(entries: List[PipelineEntry], updated: PipelineEntry) -> List[PipelineEntry]:
    return [updated if e.projectCode == updated.projectCode else e for e in entries]


def _changed_fields(before: PipelineEntry, after: PipelineEntry) -> List[str]:
    old, new = before.model_dump(), after.model_dump()
    return [k for k in EDITABLE_FIELDS if old.get(k) != new.get(k)]


def _stamp(entry: PipelineEntry, actor: AuthenticatedUser, when: datetime, **updates: Any) -> PipelineEntry:
    return entry.model_copy(update={**updates, "updatedBy": actor.display_name, "updatedAt": when})


def _mark_reviewed(
    requests: List[ChangeRequest],
    request: ChangeRequest,
    status: RequestStatus,
    reviewer: str,
    when: datetime,
    comment: Optional[str],
) -> "tuple[List[ChangeRequest], ChangeRequest]":
    reviewed = request.model_copy(
        update={"status": status, "reviewedBy": reviewer, "reviewedAt": when, "reviewComments": comment}
    )
    return [reviewed if r.id == request.id else r for r in requests], reviewed


def _remove_entry(
    state: AppState,
    entry: PipelineEntry,
    actor: AuthenticatedUser,
    when: datetime,
    description: str,
) -> AppState:
    code = entry.projectCode
    overrides = {k: v for k, v in state.monthlyOverrides.items() if k != code}
    # Pending requests for a deleted entry can never be applied
    requests = [
        r.model_copy(
            update={
                "status": RequestStatus.REJECTED,
                "reviewedBy": actor.display_name,
                "reviewedAt": when,
                "reviewComments": "Entry deleted",
            }
        )
        if r.projectCode == code and r.is_pending
        else r
        for r in state.changeRequests
    ]
    return state.model_copy(
        update={
            "entries": [e for e in state.entries if e.projectCode != code],
            "monthlyOverrides": overrides,
            "changeRequests": requests,
            "auditLog": record_change(state.auditLog, "deletion", entry, description, actor.display_name, when),
        }
    )


def add_entry(
    state: AppState,
    actor: AuthenticatedUser,
    entry: PipelineEntry,
    when: Optional[datetime] = None,
) -> ServiceResult[WorkflowOutcome]:
    when = when or _now()
    invalid = validate_entry(entry)
    if invalid:
        return _refused(invalid, "add", entry.projectCode)
    if entry.status in WORKFLOW_STATUSES:
        return _refused(
            ServiceResult.failure(
                ErrorCode.INVALID_STATE,
                f"New entries cannot start as {entry.status.value}",
                field="status",
            ),
            "add",
            entry.projectCode,
        )

    existing = {e.projectCode for e in state.entries if e.projectCode}
    counter = state.projectCounter
    code = entry.projectCode
    if not code or code in existing:
        # Collisions are repaired silently, never reported
        code, used_counter = generate_unique(existing, counter)
        counter = used_counter + 1
    else:
        match = PROJECT_CODE_PATTERN.match(code)
        if match:
            counter = max(counter, int(match.group(1)) + 1)

    created = with_computed_total(
        entry.model_copy(
            update={
                "projectCode": code,
                "createdBy": actor.display_name,
                "createdAt": when,
                "updatedBy": actor.display_name,
                "updatedAt": when,
            }
        )
    )
    next_state = state.model_copy(
        update={
            "entries": [*state.entries, created],
            "projectCounter": counter,
            "auditLog": record_change(state.auditLog, "addition", created, "Added to pipeline", actor.display_name, when),
        }
    )
    log.info("%s added %s", actor.display_name, code)
    return ServiceResult.success(WorkflowOutcome(state=next_state, entry=created))


def apply_edit(
    state: AppState,
    actor: AuthenticatedUser,
    project_code: str,
    changes: Mapping[str, Any],
    comment: Optional[str] = None,
    when: Optional[datetime] = None,
) -> ServiceResult[WorkflowOutcome]:
    """Admins edit in place; other roles get a pending change request and the entry stays as it is."""
    when = when or _now()
    entry = state.find_entry(project_code)
    if entry is None:
        return _refused(ServiceResult.not_found("Pipeline entry", project_code), "edit", project_code)
    blocked = _guard(state, entry)
    if blocked:
        return _refused(blocked, "edit", project_code)
    pending_review = _awaiting_review(entry)
    if pending_review:
        return _refused(pending_review, "edit", project_code)

    merged, invalid = _prepare_changes(entry, changes)
    if invalid:
        return _refused(invalid, "edit", project_code)

    if actor.is_admin:
        updated = with_computed_total(_stamp(merged, actor, when))
        fields = _changed_fields(entry, updated)
        description = (comment or "").strip() or (
            f"Updated {', '.join(sorted(fields))}" if fields else "Saved without changes"
        )
        next_state = state.model_copy(
            update={
                "entries": _replace_entry(state.entries, updated),
                "auditLog": record_change(state.auditLog, "change", updated, description, actor.display_name, when),
            }
        )
        log.info("%s edited %s directly", actor.display_name, project_code)
        return ServiceResult.success(WorkflowOutcome(state=next_state, entry=updated))

    missing = _require_comment(comment, "request a change")
    if missing:
        return _refused(missing, "edit", project_code)
    request = ChangeRequest(
        projectCode=project_code,
        originalEntry=entry,
        requestedChanges=merged,
        requestedBy=actor.display_name,
        requestedAt=when,
        type=RequestType.CHANGE,
        comments=comment.strip(),
    )
    next_state = state.model_copy(update={"changeRequests": [*state.changeRequests, request]})
    log.info("%s requested a change to %s (%s)", actor.display_name, project_code, request.id)
    return ServiceResult.success(
        WorkflowOutcome(state=next_state, entry=entry, request=request),
        message="Change submitted for approval",
    )


def submit_finance_review(
    state: AppState,
    actor: AuthenticatedUser,
    project_code: str,
    changes: Optional[Mapping[str, Any]],
    comment: Optional[str],
    when: Optional[datetime] = None,
) -> ServiceResult[WorkflowOutcome]:
    """Move the entry to FinanceReview now and queue the review request, for any role."""
    when = when or _now()
    entry = state.find_entry(project_code)
    if entry is None:
        return _refused(ServiceResult.not_found("Pipeline entry", project_code), "finance review", project_code)
    blocked = _guard(state, entry)
    if blocked:
        return _refused(blocked, "finance review", project_code)
    missing = _require_comment(comment, "submit for finance review")
    if missing:
        return _refused(missing, "finance review", project_code)
    pending_review = _awaiting_review(entry)
    if pending_review:
        return _refused(pending_review, "finance review", project_code)

    requested_changes = {k: v for k, v in (changes or {}).items() if k != "status"}
    requested, invalid = _prepare_changes(entry, requested_changes)
    if invalid:
        return _refused(invalid, "finance review", project_code)

    under_review = _stamp(entry, actor, when, status=EntryStatus.FINANCE_REVIEW)
    request = ChangeRequest(
        projectCode=project_code,
        originalEntry=entry,
        requestedChanges=requested,
        requestedBy=actor.display_name,
        requestedAt=when,
        type=RequestType.FINANCE_REVIEW,
        comments=comment.strip(),
    )
    next_state = state.model_copy(
        update={
            "entries": _replace_entry(state.entries, under_review),
            "changeRequests": [*state.changeRequests, request],
            "auditLog": record_change(
                state.auditLog, "change", under_review, "Submitted for finance review", actor.display_name, when
            ),
        }
    )
    log.info("%s submitted %s for finance review", actor.display_name, project_code)
    return ServiceResult.success(WorkflowOutcome(state=next_state, entry=under_review, request=request))


def request_deletion(
    state: AppState,
    actor: AuthenticatedUser,
    project_code: str,
    comment: Optional[str],
    when: Optional[datetime] = None,
) -> ServiceResult[WorkflowOutcome]:
    when = when or _now()
    entry = state.find_entry(project_code)
    if entry is None:
        return _refused(ServiceResult.not_found("Pipeline entry", project_code), "request deletion", project_code)
    blocked = _guard(state, entry)
    if blocked:
        return _refused(blocked, "request deletion", project_code)
    missing = _require_comment(comment, "request a deletion")
    if missing:
        return _refused(missing, "request deletion", project_code)
    pending_review = _awaiting_review(entry)
    if pending_review:
        return _refused(pending_review, "request deletion", project_code)

    pending = _stamp(entry, actor, when, status=EntryStatus.PENDING_DELETION)
    request = ChangeRequest(
        projectCode=project_code,
        originalEntry=entry,
        requestedChanges=None,
        requestedBy=actor.display_name,
        requestedAt=when,
        type=RequestType.DELETION,
        comments=comment.strip(),
    )
    next_state = state.model_copy(
        update={
            "entries": _replace_entry(state.entries, pending),
            "changeRequests": [*state.changeRequests, request],
            "auditLog": record_change(
                state.auditLog, "change", pending, "Marked for deletion", actor.display_name, when
            ),
        }
    )
    log.info("%s requested deletion of %s", actor.display_name, project_code)
    return ServiceResult.success(WorkflowOutcome(state=next_state, entry=pending, request=request))


def delete_entry(
    state: AppState,
    actor: AuthenticatedUser,
    project_code: str,
    confirmed: bool,
    when: Optional[datetime] = None,
) -> ServiceResult[WorkflowOutcome]:
    when = when or _now()
    entry = state.find_entry(project_code)
    if entry is None:
        return _refused(ServiceResult.not_found("Pipeline entry", project_code), "delete", project_code)
    blocked = _guard(state, entry)
    if blocked:
        return _refused(blocked, "delete", project_code)
    if not actor.is_admin:
        return _refused(ServiceResult.forbidden("delete entries directly"), "delete", project_code)
    if not confirmed:
        return _refused(
            ServiceResult.failure(ErrorCode.CONFIRMATION_REQUIRED, f"Confirm deletion of {project_code}"),
            "delete",
            project_code,
        )

    next_state = _remove_entry(state, entry, actor, when, "Deleted from pipeline")
    log.info("%s deleted %s", actor.display_name, project_code)
    return ServiceResult.success(WorkflowOutcome(state=next_state, entry=entry, purgedCode=project_code))


def _load_pending(
    state: AppState, actor: AuthenticatedUser, request_id: str, action: str
) -> "tuple[Optional[ChangeRequest], Optional[PipelineEntry], Optional[ServiceResult]]":
    if not actor.is_admin:
        return None, None, ServiceResult.forbidden(f"{action} change requests")
    request = state.find_request(request_id)
    if request is None:
        return None, None, ServiceResult.not_found("Change request", request_id)
    if not request.is_pending:
        return request, None, ServiceResult.failure(
            ErrorCode.INVALID_STATE, f"Request {request_id} was already {request.status.value}"
        )
    return request, state.find_entry(request.projectCode), None


def approve_request(
    state: AppState,
    actor: AuthenticatedUser,
    request_id: str,
    comment: Optional[str] = None,
    when: Optional[datetime] = None,
) -> ServiceResult[WorkflowOutcome]:
    when = when or _now()
    request, entry, refused = _load_pending(state, actor, request_id, "approve")
    if refused:
        return _refused(refused, "approve", request_id)
    if entry is None:
        return _refused(ServiceResult.not_found("Pipeline entry", request.projectCode), "approve", request_id)

    purged = None
    if request.type == RequestType.FINANCE_REVIEW:
        updated = with_computed_total(
            _stamp(entry, actor, when, **{**_requested_fields(request), "status": EntryStatus.CONFIRMED})
        )
        next_state = state.model_copy(
            update={
                "entries": _replace_entry(state.entries, updated),
                "auditLog": record_change(
                    state.auditLog, "change", updated, "Finance review approved", actor.display_name, when
                ),
            }
        )
    elif request.type == RequestType.CHANGE:
        blocked = _guard(state, entry) or _awaiting_review(entry)
        if blocked:
            return _refused(blocked, "approve", request_id)
        updated = with_computed_total(_stamp(entry, actor, when, **_requested_fields(request)))
        description = f"Change approved: {request.comments}" if request.comments else "Change approved"
        next_state = state.model_copy(
            update={
                "entries": _replace_entry(state.entries, updated),
                "auditLog": record_change(state.auditLog, "change", updated, description, actor.display_name, when),
            }
        )
    else:
        if is_entry_locked(state, entry):
            return _refused(_guard(state, entry), "approve", request_id)
        updated = entry
        next_state = _remove_entry(state, entry, actor, when, "Deletion approved")
        purged = entry.projectCode

    requests, reviewed = _mark_reviewed(
        next_state.changeRequests, request, RequestStatus.APPROVED, actor.display_name, when, comment
    )
    next_state = next_state.model_copy(update={"changeRequests": requests})
    log.info("%s approved %s request %s for %s", actor.display_name, request.type.value, request_id, request.projectCode)
    return ServiceResult.success(WorkflowOutcome(state=next_state, entry=updated, request=reviewed, purgedCode=purged))


def reject_request(
    state: AppState,
    actor: AuthenticatedUser,
    request_id: str,
    comment: Optional[str] = None,
    when: Optional[datetime] = None,
) -> ServiceResult[WorkflowOutcome]:
    """Rejected finance reviews and deletions put the entry back to Open; rejected changes leave it alone."""
    when = when or _now()
    request, entry, refused = _load_pending(state, actor, request_id, "reject")
    if refused:
        return _refused(refused, "reject", request_id)

    next_state = state
    if request.type in (RequestType.FINANCE_REVIEW, RequestType.DELETION):
        if entry is None:
            return _refused(ServiceResult.not_found("Pipeline entry", request.projectCode), "reject", request_id)
        entry = _stamp(entry, actor, when, status=EntryStatus.OPEN)
        description = (
            "Finance review rejected" if request.type == RequestType.FINANCE_REVIEW else "Deletion request rejected"
        )
        next_state = state.model_copy(
            update={
                "entries": _replace_entry(state.entries, entry),
                "auditLog": record_change(state.auditLog, "change", entry, description, actor.display_name, when),
            }
        )

    requests, reviewed = _mark_reviewed(
        next_state.changeRequests, request, RequestStatus.REJECTED, actor.display_name, when, comment
    )
    next_state = next_state.model_copy(update={"changeRequests": requests})
    log.info("%s rejected %s request %s for %s", actor.display_name, request.type.value, request_id, request.projectCode)
    return ServiceResult.success(WorkflowOutcome(state=next_state, entry=entry, request=reviewed))


def set_monthly_override(
    state: AppState,
    actor: AuthenticatedUser,
    project_code: str,
    month: str,
    amount: Optional[float],
    when: Optional[datetime] = None,
) -> ServiceResult[WorkflowOutcome]:
    """Pin one month's share of an entry's fee; an amount of None clears the override."""
    when = when or _now()
    entry = state.find_entry(project_code)
    if entry is None:
        return _refused(ServiceResult.not_found("Pipeline entry", project_code), "override", project_code)
    blocked = _guard(state, entry)
    if blocked:
        return _refused(blocked, "override", project_code)
    if not actor.is_admin:
        return _refused(ServiceResult.forbidden("override monthly fees"), "override", project_code)
    name = normalize_month_name(month)
    if name is None:
        return _refused(ServiceResult.validation_failure(f"Unknown month: {month}", field="month"), "override", project_code)
    if amount is not None and amount < 0:
        return _refused(ServiceResult.validation_failure("Override amount cannot be negative", field="amount"), "override", project_code)

    overrides: Dict[str, Dict[str, float]] = {k: dict(v) for k, v in state.monthlyOverrides.items()}
    project_overrides = overrides.setdefault(project_code, {})
    if amount is None:
        project_overrides.pop(name, None)
        description = f"Cleared {name} override"
    else:
        project_overrides[name] = float(amount)
        description = f"Set {name} override to {amount:,.2f}"
    if not project_overrides:
        overrides.pop(project_code)

    next_state = state.model_copy(
        update={
            "monthlyOverrides": overrides,
            "auditLog": record_change(state.auditLog, "change", entry, description, actor.display_name, when),
        }
    )
    return ServiceResult.success(WorkflowOutcome(state=next_state, entry=entry))


def clear_monthly_override(
    state: AppState,
    actor: AuthenticatedUser,
    project_code: str,
    month: str,
    when: Optional[datetime] = None,
) -> ServiceResult[WorkflowOutcome]:
    return set_monthly_override(state, actor, project_code, month, None, when)
