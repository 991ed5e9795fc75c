import logging
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import ValidationError

from ..core.auth import get_current_user
from ..models.allocation import AllocationSummary, ProjectPlan
from ..models.user import AuthenticatedUser
from ..services.allocation_service import allocation_summary, projects_for_person
from ..services.pipeline_repository import QUOTES_KEY, parse_list
from ..services.storage_service import CloudStorage, get_storage

router = APIRouter()
log = logging.getLogger(__name__)


def load_project_plans(storage: CloudStorage) -> List[ProjectPlan]:
    plans = []
    for quote in parse_list(storage.get_item(QUOTES_KEY)):
        if not isinstance(quote, dict):
            continue
        try:
            plans.append(ProjectPlan.from_quote(quote))
        except ValidationError:
            log.warning("Skipping quote %s with unreadable project plan", quote.get("id"))
    return plans


@router.get("/allocation/{person}", response_model=AllocationSummary)
async def person_allocation(
    person: str,
    today: Optional[date] = None,
    user: AuthenticatedUser = Depends(get_current_user),
    storage: CloudStorage = Depends(get_storage),
):
    return allocation_summary(load_project_plans(storage), person, today or date.today())


@router.get("/allocation/{person}/projects")
async def person_projects(
    person: str,
    user: AuthenticatedUser = Depends(get_current_user),
    storage: CloudStorage = Depends(get_storage),
):
    plans = projects_for_person(load_project_plans(storage), person)
    return {
        "projects": [
            {"id": plan.id, "projectNumber": plan.projectNumber, "label": plan.label}
            for plan in plans
        ]
    }
