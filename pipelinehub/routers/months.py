from fastapi import APIRouter, Depends

from ..core.auth import get_current_user
from ..models.user import AuthenticatedUser
from ..models.workflow import MonthLockPayload, MonthNotePayload
from ..services.fee_distribution import MONTH_NAMES
from ..services.month_lock import blocking_entries, lock_month, set_month_note
from ..services.pipeline_repository import load_state, persist_state
from ..services.storage_service import CloudStorage, get_storage
from .commands import raise_for_failure

router = APIRouter()


@router.get("/month-locks")
async def list_month_locks(
    user: AuthenticatedUser = Depends(get_current_user),
    storage: CloudStorage = Depends(get_storage),
):
    state = await load_state(storage)
    return {
        "months": [
            {
                "index": index,
                "month": name,
                "locked": bool(state.monthLocks.get(index, False)),
                "note": state.monthNotes.get(index),
                "blockingEntries": blocking_entries(state, index),
            }
            for index, name in enumerate(MONTH_NAMES)
        ]
    }


@router.post("/month-locks/{month_index}")
async def lock_calendar_month(
    month_index: int,
    payload: MonthLockPayload,
    user: AuthenticatedUser = Depends(get_current_user),
    storage: CloudStorage = Depends(get_storage),
):
    state = await load_state(storage)
    result = lock_month(state, user, month_index, payload.confirmed)
    raise_for_failure(result)
    persisted = await persist_state(storage, state, result.data.state)
    return {"ok": True, "persisted": persisted, "month": MONTH_NAMES[month_index], "locked": True}


@router.put("/month-notes/{month_index}")
async def update_month_note(
    month_index: int,
    payload: MonthNotePayload,
    user: AuthenticatedUser = Depends(get_current_user),
    storage: CloudStorage = Depends(get_storage),
):
    state = await load_state(storage)
    result = set_month_note(state, user, month_index, payload.note)
    raise_for_failure(result)
    persisted = await persist_state(storage, state, result.data.state)
    return {"ok": True, "persisted": persisted, "note": result.data.state.monthNotes.get(month_index)}
