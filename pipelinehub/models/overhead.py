from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class OverheadEmployee(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    user_id: Optional[str] = None
    department: str
    employee_name: str
    role: str
    location: Optional[str] = "Canada"
    annual_salary: float = 0
    allocation_percent: float = 100
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    monthly_allocations: Dict[str, float] = Field(default_factory=dict)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    created_by: Optional[str] = None
    updated_by: Optional[str] = None

    @field_validator("start_date", "end_date", "created_at", "updated_at", mode="before")
    @classmethod
    def _isoformat(cls, value):
        # psycopg hands back date/datetime objects
        return value.isoformat() if hasattr(value, "isoformat") else value

    @field_validator("allocation_percent")
    @classmethod
    def _allocation_range(cls, value: float) -> float:
        if value < 0 or value > 100:
            raise ValueError("allocation_percent must be between 0 and 100")
        return value


class FreelancerCost(BaseModel):
    department: str
    month: str
    amount: float = 0


class OverheadResponse(BaseModel):
    employees: List[OverheadEmployee]


class StaffingCostResponse(BaseModel):
    department: Optional[str] = None
    monthlyCost: Dict[str, float]
