from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import ValidationError

from ..core.auth import get_current_user
from ..core.config import current_year
from ..models.forecast import DistributionResponse
from ..models.pipeline import PipelineEntry, PipelineResponse
from ..models.user import AuthenticatedUser
from ..models.workflow import CommandResponse, EditPayload, OverridePayload, ReviewPayload
from ..services import workflow_service
from ..services.fee_distribution import distribute_fees, total_project_months
from ..services.pipeline_repository import load_state
from ..services.project_codes import generate_unique
from ..services.storage_service import CloudStorage, get_storage
from .commands import commit

router = APIRouter()


@router.get("/pipeline", response_model=PipelineResponse)
async def list_pipeline(
    user: AuthenticatedUser = Depends(get_current_user),
    storage: CloudStorage = Depends(get_storage),
):
    state = await load_state(storage)
    return {"entries": state.entries, "changelog": state.auditLog}


@router.post("/pipeline", response_model=CommandResponse)
async def create_pipeline_entry(
    payload: dict = Body(...),
    user: AuthenticatedUser = Depends(get_current_user),
    storage: CloudStorage = Depends(get_storage),
):
    entry_data = payload.get("entry") if isinstance(payload, dict) else None
    entry_data = entry_data or payload
    if not entry_data:
        raise HTTPException(status_code=400, detail="entry is required")
    try:
        entry = PipelineEntry.model_validate(entry_data)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=exc.errors(include_url=False)) from exc

    state = await load_state(storage)
    return await commit(storage, state, workflow_service.add_entry(state, user, entry))


@router.get("/pipeline/next-code")
async def next_project_code(
    user: AuthenticatedUser = Depends(get_current_user),
    storage: CloudStorage = Depends(get_storage),
):
    state = await load_state(storage)
    code, _ = generate_unique({e.projectCode for e in state.entries}, state.projectCounter)
    return {"projectCode": code}


@router.get("/pipeline/{project_code}/distribution", response_model=DistributionResponse)
async def entry_distribution(
    project_code: str,
    year: Optional[int] = None,
    user: AuthenticatedUser = Depends(get_current_user),
    storage: CloudStorage = Depends(get_storage),
):
    state = await load_state(storage)
    entry = state.find_entry(project_code)
    if entry is None:
        raise HTTPException(status_code=404, detail=f"Pipeline project {project_code} was not found")
    monthly = distribute_fees(entry, state.monthlyOverrides.get(project_code), year or current_year())
    return {"projectCode": project_code, "totalProjectMonths": total_project_months(entry), "monthly": monthly}


@router.put("/pipeline/{project_code}", response_model=CommandResponse)
async def update_pipeline_entry(
    project_code: str,
    payload: EditPayload,
    user: AuthenticatedUser = Depends(get_current_user),
    storage: CloudStorage = Depends(get_storage),
):
    state = await load_state(storage)
    result = workflow_service.apply_edit(state, user, project_code, payload.changes, payload.comment)
    return await commit(storage, state, result)


@router.post("/pipeline/{project_code}/finance-review", response_model=CommandResponse)
async def submit_finance_review(
    project_code: str,
    payload: EditPayload,
    user: AuthenticatedUser = Depends(get_current_user),
    storage: CloudStorage = Depends(get_storage),
):
    state = await load_state(storage)
    result = workflow_service.submit_finance_review(state, user, project_code, payload.changes, payload.comment)
    return await commit(storage, state, result)


@router.post("/pipeline/{project_code}/deletion-request", response_model=CommandResponse)
async def request_deletion(
    project_code: str,
    payload: ReviewPayload,
    user: AuthenticatedUser = Depends(get_current_user),
    storage: CloudStorage = Depends(get_storage),
):
    state = await load_state(storage)
    result = workflow_service.request_deletion(state, user, project_code, payload.comment)
    return await commit(storage, state, result)


@router.delete("/pipeline/{project_code}", response_model=CommandResponse)
async def remove_pipeline_entry(
    project_code: str,
    confirmed: bool = False,
    user: AuthenticatedUser = Depends(get_current_user),
    storage: CloudStorage = Depends(get_storage),
):
    state = await load_state(storage)
    result = workflow_service.delete_entry(state, user, project_code, confirmed)
    return await commit(storage, state, result)


@router.put("/pipeline/{project_code}/overrides", response_model=CommandResponse)
async def set_monthly_override(
    project_code: str,
    payload: OverridePayload,
    user: AuthenticatedUser = Depends(get_current_user),
    storage: CloudStorage = Depends(get_storage),
):
    state = await load_state(storage)
    result = workflow_service.set_monthly_override(state, user, project_code, payload.month, payload.amount)
    return await commit(storage, state, result)


@router.delete("/pipeline/{project_code}/overrides/{month}", response_model=CommandResponse)
async def clear_monthly_override(
    project_code: str,
    month: str,
    user: AuthenticatedUser = Depends(get_current_user),
    storage: CloudStorage = Depends(get_storage),
):
    state = await load_state(storage)
    result = workflow_service.clear_monthly_override(state, user, project_code, month)
    return await commit(storage, state, result)
