from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from .overhead import FreelancerCost
from .pipeline import PipelineChange, PipelineEntry


class RequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class RequestType(str, Enum):
    CHANGE = "change"
    DELETION = "deletion"
    FINANCE_REVIEW = "finance-review"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ChangeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: uuid4().hex)
    projectCode: str
    originalEntry: PipelineEntry
    # None means the request asks for the entry to be deleted
    requestedChanges: Optional[PipelineEntry] = None
    requestedBy: str
    requestedAt: datetime = Field(default_factory=_now)
    status: RequestStatus = RequestStatus.PENDING
    type: RequestType = RequestType.CHANGE
    comments: str = ""
    reviewedBy: Optional[str] = None
    reviewedAt: Optional[datetime] = None
    reviewComments: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return self.status == RequestStatus.PENDING


class AppState(BaseModel):
    """Everything the workflow commands read and write, loaded per request."""

    entries: List[PipelineEntry] = Field(default_factory=list)
    changeRequests: List[ChangeRequest] = Field(default_factory=list)
    monthlyOverrides: Dict[str, Dict[str, float]] = Field(default_factory=dict)
    monthLocks: Dict[int, bool] = Field(default_factory=dict)
    monthNotes: Dict[int, str] = Field(default_factory=dict)
    auditLog: List[PipelineChange] = Field(default_factory=list)
    projectCounter: int = 1
    freelancerCosts: List[FreelancerCost] = Field(default_factory=list)

    def find_entry(self, project_code: str) -> Optional[PipelineEntry]:
        return next((e for e in self.entries if e.projectCode == project_code), None)

    def find_request(self, request_id: str) -> Optional[ChangeRequest]:
        return next((r for r in self.changeRequests if r.id == request_id), None)

    def pending_requests(self) -> List[ChangeRequest]:
        return [r for r in self.changeRequests if r.is_pending]


class WorkflowOutcome(BaseModel):
    """Next state plus the records a caller usually wants to echo back."""

    state: AppState
    entry: Optional[PipelineEntry] = None
    request: Optional[ChangeRequest] = None
    # Set when an entry was removed and its mirrored records must be purged
    purgedCode: Optional[str] = None


class EditPayload(BaseModel):
    changes: Dict[str, Any] = Field(default_factory=dict)
    comment: Optional[str] = None


class ReviewPayload(BaseModel):
    comment: Optional[str] = None


class OverridePayload(BaseModel):
    month: str
    amount: Optional[float] = None


class MonthLockPayload(BaseModel):
    confirmed: bool = False


class MonthNotePayload(BaseModel):
    note: str = ""


class CommandResponse(BaseModel):
    ok: bool = True
    persisted: bool = True
    entry: Optional[PipelineEntry] = None
    request: Optional[ChangeRequest] = None
