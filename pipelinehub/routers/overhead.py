from typing import List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import ValidationError

from ..core.auth import get_current_user, require_admin
from ..core.config import settings
from ..models.overhead import FreelancerCost, OverheadEmployee, OverheadResponse, StaffingCostResponse
from ..models.pipeline import DEPARTMENTS
from ..models.user import AuthenticatedUser
from ..services.fee_distribution import normalize_month_name
from ..services.overhead_service import (
    delete_overhead_employee,
    list_overhead_employees,
    total_staffing_cost,
    upsert_overhead_employees,
)
from ..services.pipeline_repository import load_state, persist_state
from ..services.storage_service import CloudStorage, get_storage

router = APIRouter()


async def current_overhead_employees() -> List[OverheadEmployee]:
    """Overhead rows for the shared workspace."""
    return await list_overhead_employees(settings.workspace_id)


@router.get("/overhead-employees", response_model=OverheadResponse)
async def get_overhead_employees(
    user: AuthenticatedUser = Depends(get_current_user),
    employees: List[OverheadEmployee] = Depends(current_overhead_employees),
):
    return {"employees": employees}


@router.post("/overhead-employees", response_model=OverheadResponse)
async def save_overhead_employees(
    payload: dict = Body(...),
    admin_user: AuthenticatedUser = Depends(require_admin),
):
    employees_data = payload.get("employees") if isinstance(payload, dict) else None
    if employees_data is None:
        raise HTTPException(status_code=400, detail="employees is required")
    try:
        employees = [OverheadEmployee.model_validate(emp) for emp in employees_data]
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=exc.errors(include_url=False)) from exc
    saved = await upsert_overhead_employees(settings.workspace_id, employees, admin_user.display_name)
    return {"employees": saved}


@router.delete("/overhead-employees")
async def remove_overhead_employee(
    id: str,
    admin_user: AuthenticatedUser = Depends(require_admin),
):
    await delete_overhead_employee(settings.workspace_id, id)
    return {"ok": True}


@router.get("/overhead-employees/monthly-cost", response_model=StaffingCostResponse)
async def staffing_cost(
    department: Optional[str] = None,
    user: AuthenticatedUser = Depends(get_current_user),
    storage: CloudStorage = Depends(get_storage),
    employees: List[OverheadEmployee] = Depends(current_overhead_employees),
):
    if department and department not in DEPARTMENTS:
        raise HTTPException(status_code=400, detail=f"Unknown department {department}")
    state = await load_state(storage)
    return {"department": department, "monthlyCost": total_staffing_cost(employees, state.freelancerCosts, department)}


@router.get("/freelancer-costs", response_model=List[FreelancerCost])
async def get_freelancer_costs(
    user: AuthenticatedUser = Depends(get_current_user),
    storage: CloudStorage = Depends(get_storage),
):
    state = await load_state(storage)
    return state.freelancerCosts


@router.put("/freelancer-costs")
async def replace_freelancer_costs(
    costs: List[FreelancerCost],
    admin_user: AuthenticatedUser = Depends(require_admin),
    storage: CloudStorage = Depends(get_storage),
):
    for cost in costs:
        if cost.department not in DEPARTMENTS:
            raise HTTPException(status_code=400, detail=f"Unknown department {cost.department}")
        if normalize_month_name(cost.month) is None:
            raise HTTPException(status_code=400, detail=f"Unknown month {cost.month}")
        if cost.amount < 0:
            raise HTTPException(status_code=400, detail="Freelancer cost cannot be negative")
    state = await load_state(storage)
    updated = state.model_copy(
        update={
            "freelancerCosts": [c.model_copy(update={"month": normalize_month_name(c.month)}) for c in costs]
        }
    )
    persisted = await persist_state(storage, state, updated)
    return {"ok": True, "persisted": persisted, "costs": updated.freelancerCosts}
