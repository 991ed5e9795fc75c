from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException

from ..core.auth import get_current_user
from ..models.user import AuthenticatedUser
from ..models.workflow import ChangeRequest, CommandResponse, RequestStatus, ReviewPayload
from ..services import workflow_service
from ..services.pipeline_repository import load_state
from ..services.storage_service import CloudStorage, get_storage
from .commands import commit

router = APIRouter()


@router.get("/change-requests", response_model=List[ChangeRequest])
async def list_change_requests(
    status: Optional[str] = None,
    user: AuthenticatedUser = Depends(get_current_user),
    storage: CloudStorage = Depends(get_storage),
):
    state = await load_state(storage)
    requests = state.changeRequests
    if status:
        try:
            wanted = RequestStatus(status.lower())
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=f"Unknown status {status}") from exc
        requests = [r for r in requests if r.status == wanted]
    return sorted(requests, key=lambda r: r.requestedAt, reverse=True)


@router.post("/change-requests/{request_id}/approve", response_model=CommandResponse)
async def approve_change_request(
    request_id: str,
    payload: Optional[ReviewPayload] = None,
    user: AuthenticatedUser = Depends(get_current_user),
    storage: CloudStorage = Depends(get_storage),
):
    state = await load_state(storage)
    result = workflow_service.approve_request(state, user, request_id, payload.comment if payload else None)
    return await commit(storage, state, result)


@router.post("/change-requests/{request_id}/reject", response_model=CommandResponse)
async def reject_change_request(
    request_id: str,
    payload: Optional[ReviewPayload] = None,
    user: AuthenticatedUser = Depends(get_current_user),
    storage: CloudStorage = Depends(get_storage),
):
    state = await load_state(storage)
    result = workflow_service.reject_request(state, user, request_id, payload.comment if payload else None)
    return await commit(storage, state, result)
