from calendar import monthrange
from datetime import date, datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, ValidationInfo, field_validator, model_validator

DEPARTMENTS = (
    "accounts",
    "creative",
    "design",
    "strategy",
    "media",
    "studio",
    "creator",
    "social",
    "omni",
    "finance",
)


class EntryStatus(str, Enum):
    OPEN = "open"
    CONFIRMED = "confirmed"
    HIGH_PITCH = "high-pitch"
    MEDIUM_PITCH = "medium-pitch"
    LOW_PITCH = "low-pitch"
    WHITESPACE = "whitespace"
    FINANCE_REVIEW = "finance-review"
    PENDING_DELETION = "pending-deletion"


_STATUS_ALIASES = {
    "open": EntryStatus.OPEN,
    "in plan": EntryStatus.OPEN,
    "in-plan": EntryStatus.OPEN,
    "planning": EntryStatus.OPEN,
    "confirmed": EntryStatus.CONFIRMED,
    "high pitch": EntryStatus.HIGH_PITCH,
    "high-pitch": EntryStatus.HIGH_PITCH,
    "highpitch": EntryStatus.HIGH_PITCH,
    "medium pitch": EntryStatus.MEDIUM_PITCH,
    "medium-pitch": EntryStatus.MEDIUM_PITCH,
    "mediumpitch": EntryStatus.MEDIUM_PITCH,
    "low pitch": EntryStatus.LOW_PITCH,
    "low-pitch": EntryStatus.LOW_PITCH,
    "lowpitch": EntryStatus.LOW_PITCH,
    "whitespace": EntryStatus.WHITESPACE,
    "finance review": EntryStatus.FINANCE_REVIEW,
    "finance-review": EntryStatus.FINANCE_REVIEW,
    "financereview": EntryStatus.FINANCE_REVIEW,
    "pending deletion": EntryStatus.PENDING_DELETION,
    "pending-deletion": EntryStatus.PENDING_DELETION,
    "pendingdeletion": EntryStatus.PENDING_DELETION,
}


def normalize_status(status: Any) -> EntryStatus:
    if isinstance(status, EntryStatus):
        return status
    raw = str(status or "open").lower().strip()
    return _STATUS_ALIASES.get(raw, EntryStatus.OPEN)


def parse_date(value: Any, is_end: bool) -> Optional[date]:
    """Accept ISO dates, ISO datetimes and `Jan 2025` style month labels."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    trimmed = str(value).strip()

    parts = trimmed.split()
    if len(parts) == 2 and parts[1].isdigit():
        for fmt in ("%b %Y", "%B %Y"):
            try:
                parsed = datetime.strptime(trimmed, fmt)
            except ValueError:
                continue
            y, m = parsed.year, parsed.month
            return date(y, m, monthrange(y, m)[1] if is_end else 1)
        # `Sept 2025` is how the overhead sheet labels September
        if parts[0].lower() == "sept":
            return date(int(parts[1]), 9, 30 if is_end else 1)

    try:
        return datetime.fromisoformat(trimmed).date()
    except ValueError:
        return None


def month_label(value: Optional[date]) -> Optional[str]:
    return value.strftime("%b %Y") if value else None


class PipelineEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    projectCode: Optional[str] = None
    owner: str = ""
    client: str = ""
    programName: str = ""
    programType: Optional[str] = "Integrated"
    region: Optional[str] = "Canada"
    startMonth: Optional[str] = None
    endMonth: Optional[str] = None
    startDate: Optional[date] = None
    endDate: Optional[date] = None
    revenue: float = 0
    totalFees: float = 0
    status: EntryStatus = EntryStatus.OPEN
    accounts: float = 0
    creative: float = 0
    design: float = 0
    strategy: float = 0
    media: float = 0
    studio: float = 0
    creator: float = 0
    social: float = 0
    omni: float = 0
    finance: float = 0
    parentProjectCode: Optional[str] = None
    createdBy: Optional[str] = None
    updatedBy: Optional[str] = None
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Any) -> EntryStatus:
        return normalize_status(value)

    @field_validator("startDate", "endDate", mode="before")
    @classmethod
    def _parse_dates(cls, value: Any, info: ValidationInfo) -> Optional[date]:
        return parse_date(value, is_end=info.field_name == "endDate")

    @model_validator(mode="after")
    def _fill_dates_from_months(self) -> "PipelineEntry":
        if self.startDate is None and self.startMonth:
            self.startDate = parse_date(self.startMonth, False)
        if self.endDate is None and self.endMonth:
            self.endDate = parse_date(self.endMonth, True)
        if not self.startMonth:
            self.startMonth = month_label(self.startDate)
        if not self.endMonth:
            self.endMonth = month_label(self.endDate)
        return self

    def department_fee(self, department: str) -> float:
        if department not in DEPARTMENTS:
            raise KeyError(department)
        return float(getattr(self, department) or 0)

    def department_total(self) -> float:
        return sum(self.department_fee(d) for d in DEPARTMENTS)

    @property
    def start_month_index(self) -> Optional[int]:
        return self.startDate.month - 1 if self.startDate else None


class PipelineChange(BaseModel):
    type: str
    projectCode: str
    projectName: Optional[str] = None
    client: Optional[str] = None
    description: str
    date: str
    user: str


class PipelineResponse(BaseModel):
    entries: List[PipelineEntry]
    changelog: List[PipelineChange]
