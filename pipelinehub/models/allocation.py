from datetime import date
from typing import Dict, Iterator, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .pipeline import parse_date


class Assignment(BaseModel):
    model_config = ConfigDict(extra="ignore")

    assignee: str = ""
    startDate: Optional[date] = None
    endDate: Optional[date] = None
    allocation: float = 0

    @field_validator("startDate", "endDate", mode="before")
    @classmethod
    def _dates(cls, value):
        return parse_date(value, is_end=False)

    @field_validator("allocation", mode="before")
    @classmethod
    def _allocation(cls, value):
        try:
            return float(value or 0)
        except (TypeError, ValueError):
            return 0.0

    def is_for(self, person: str) -> bool:
        return self.assignee.strip() == person.strip()


class Task(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    name: str = ""
    owner: str = ""
    date: Optional[str] = None
    endDate: Optional[str] = None
    status: Optional[str] = None


class WorkbackSection(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = ""
    tasks: List[Task] = Field(default_factory=list)


# phase -> department -> assignments
PhaseAssignments = Dict[str, Dict[str, List[Assignment]]]


class ProjectPlan(BaseModel):
    """The project-management slice of a saved quote."""

    model_config = ConfigDict(extra="ignore")

    id: str
    projectNumber: Optional[str] = None
    clientName: Optional[str] = None
    projectName: Optional[str] = None
    resourceAssignments: PhaseAssignments = Field(default_factory=dict)
    workback: List[WorkbackSection] = Field(default_factory=list)

    @classmethod
    def from_quote(cls, quote: dict) -> "ProjectPlan":
        project = quote.get("project") or {}
        pm_data = quote.get("pmData") or {}
        return cls.model_validate(
            {
                "id": str(quote.get("id") or project.get("projectNumber") or ""),
                "projectNumber": quote.get("projectNumber") or project.get("projectNumber"),
                "clientName": project.get("clientName") or quote.get("clientName"),
                "projectName": project.get("projectName") or quote.get("projectName"),
                "resourceAssignments": {
                    phase: {dept: list(items or []) for dept, items in (depts or {}).items()}
                    for phase, depts in (pm_data.get("resourceAssignments") or {}).items()
                },
                "workback": pm_data.get("workback") or [],
            }
        )

    @property
    def label(self) -> str:
        return f"{self.clientName or 'Client'} - {self.projectName or 'Project'}"

    def assignments(self) -> Iterator[Assignment]:
        for departments in self.resourceAssignments.values():
            for items in departments.values():
                yield from items

    def tasks(self) -> Iterator[Task]:
        for section in self.workback:
            yield from section.tasks


class DateRange(BaseModel):
    label: str
    start: date
    end: date


class RangeAllocation(BaseModel):
    label: str
    allocation: float


class AllocationSummary(BaseModel):
    person: str
    weekly: List[RangeAllocation]
    monthly: List[RangeAllocation]
