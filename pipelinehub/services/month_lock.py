import logging
from typing import List, Optional

from ..core.results import ErrorCode, ServiceResult
from ..models.pipeline import EntryStatus, PipelineEntry
from ..models.user import AuthenticatedUser
from ..models.workflow import AppState, WorkflowOutcome
from .fee_distribution import MONTH_NAMES

log = logging.getLogger(__name__)


def is_month_locked(state: AppState, month_index: Optional[int]) -> bool:
    if month_index is None:
        return False
    return bool(state.monthLocks.get(month_index, False))


def is_entry_locked(state: AppState, entry: PipelineEntry) -> bool:
    return is_month_locked(state, entry.start_month_index)


def blocking_entries(state: AppState, month_index: int) -> List[str]:
    """Codes of entries starting in the month that are not yet Confirmed."""
    return [
        e.projectCode or ""
        for e in state.entries
        if e.start_month_index == month_index and e.status != EntryStatus.CONFIRMED
    ]


def lock_month(
    state: AppState,
    actor: AuthenticatedUser,
    month_index: int,
    confirmed: bool,
) -> ServiceResult[WorkflowOutcome]:
    """
    Lock a calendar month against further edits.

    Locks are one-way: nothing in the system clears them. Locking an
    already-locked month succeeds without changes.
    """
    if not actor.is_admin:
        return ServiceResult.forbidden("lock months")
    if not 0 <= month_index <= 11:
        return ServiceResult.validation_failure("Month index must be between 0 and 11", field="month")
    if is_month_locked(state, month_index):
        return ServiceResult.success(WorkflowOutcome(state=state), message="Month already locked")

    blockers = blocking_entries(state, month_index)
    if blockers:
        log.info("Refused to lock %s: %d unconfirmed entries", MONTH_NAMES[month_index], len(blockers))
        return ServiceResult.failure(
            ErrorCode.BUSINESS_RULE_VIOLATION,
            f"Cannot lock {MONTH_NAMES[month_index]}: {len(blockers)} entries starting that month are not confirmed",
            details={"projectCodes": blockers},
        )
    if not confirmed:
        return ServiceResult.failure(
            ErrorCode.CONFIRMATION_REQUIRED,
            f"Locking {MONTH_NAMES[month_index]} cannot be undone; confirm to continue",
        )

    locks = {**state.monthLocks, month_index: True}
    log.info("%s locked %s", actor.display_name, MONTH_NAMES[month_index])
    return ServiceResult.success(WorkflowOutcome(state=state.model_copy(update={"monthLocks": locks})))


def set_month_note(state: AppState, actor: AuthenticatedUser, month_index: int, note: str) -> ServiceResult[WorkflowOutcome]:
    if not 0 <= month_index <= 11:
        return ServiceResult.validation_failure("Month index must be between 0 and 11", field="month")
    notes = dict(state.monthNotes)
    if note.strip():
        notes[month_index] = note.strip()
    else:
        notes.pop(month_index, None)
    log.info("%s updated the note for %s", actor.display_name, MONTH_NAMES[month_index])
    return ServiceResult.success(WorkflowOutcome(state=state.model_copy(update={"monthNotes": notes})))
