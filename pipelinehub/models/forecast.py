from typing import Dict, List, Optional

from pydantic import BaseModel


class ForecastTotals(BaseModel):
    potentialByMonth: Dict[str, float]
    weightedByMonth: Dict[str, float]
    confirmedByMonth: Dict[str, float]


class ClientForecast(BaseModel):
    client: str
    potential: float = 0
    weighted: float = 0
    confirmed: float = 0
    projects: int = 0


class CostRatio(BaseModel):
    ratio: float
    hot: bool


class MonthCostRatio(BaseModel):
    month: str
    cost: float
    weighted: CostRatio
    potential: CostRatio
    confirmed: CostRatio


class CostRatioResponse(BaseModel):
    department: Optional[str] = None
    months: List[MonthCostRatio]


class DistributionResponse(BaseModel):
    projectCode: str
    totalProjectMonths: int
    monthly: Dict[str, float]
