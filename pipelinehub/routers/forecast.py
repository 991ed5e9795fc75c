from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException

from ..core.auth import get_current_user
from ..core.config import current_year
from ..models.forecast import ClientForecast, CostRatioResponse, ForecastTotals
from ..models.overhead import OverheadEmployee
from ..models.pipeline import DEPARTMENTS
from ..models.user import AuthenticatedUser
from ..services.fee_distribution import round_currency, round_half_up
from ..services.forecast_service import (
    aggregate_by_client,
    aggregate_by_department,
    aggregate_forecast,
    cost_ratio_view,
    department_selector,
)
from ..services.overhead_service import total_staffing_cost
from ..services.pipeline_repository import load_state
from ..services.storage_service import CloudStorage, get_storage
from .overhead import current_overhead_employees

router = APIRouter()


def _rounded(totals: ForecastTotals) -> ForecastTotals:
    return ForecastTotals(
        potentialByMonth=round_currency(totals.potentialByMonth),
        weightedByMonth=round_currency(totals.weightedByMonth),
        confirmedByMonth=round_currency(totals.confirmedByMonth),
    )


@router.get("/forecast", response_model=ForecastTotals)
async def monthly_forecast(
    year: Optional[int] = None,
    user: AuthenticatedUser = Depends(get_current_user),
    storage: CloudStorage = Depends(get_storage),
):
    state = await load_state(storage)
    return _rounded(aggregate_forecast(state.entries, year=year or current_year(), overrides=state.monthlyOverrides))


@router.get("/forecast/departments")
async def department_forecast(
    year: Optional[int] = None,
    user: AuthenticatedUser = Depends(get_current_user),
    storage: CloudStorage = Depends(get_storage),
):
    state = await load_state(storage)
    by_department = aggregate_by_department(state.entries, year or current_year())
    return {"departments": {name: _rounded(totals) for name, totals in by_department.items()}}


@router.get("/forecast/clients", response_model=List[ClientForecast])
async def client_forecast(
    year: Optional[int] = None,
    user: AuthenticatedUser = Depends(get_current_user),
    storage: CloudStorage = Depends(get_storage),
):
    state = await load_state(storage)
    rows = aggregate_by_client(state.entries, year or current_year(), state.monthlyOverrides)
    return [
        row.model_copy(
            update={
                "potential": round_half_up(row.potential),
                "weighted": round_half_up(row.weighted),
                "confirmed": round_half_up(row.confirmed),
            }
        )
        for row in rows
    ]


@router.get("/forecast/cost-ratio", response_model=CostRatioResponse)
async def cost_ratio(
    department: Optional[str] = None,
    year: Optional[int] = None,
    user: AuthenticatedUser = Depends(get_current_user),
    storage: CloudStorage = Depends(get_storage),
    employees: List[OverheadEmployee] = Depends(current_overhead_employees),
):
    if department and department not in DEPARTMENTS:
        raise HTTPException(status_code=400, detail=f"Unknown department {department}")
    state = await load_state(storage)
    year = year or current_year()
    if department:
        totals = aggregate_forecast(state.entries, department_selector(department), year)
    else:
        totals = aggregate_forecast(state.entries, year=year, overrides=state.monthlyOverrides)
    cost = total_staffing_cost(employees, state.freelancerCosts, department)
    return {"department": department, "months": cost_ratio_view(totals, cost)}
