import math
from datetime import date
from typing import Dict, List, Mapping, Optional

from dateutil.relativedelta import relativedelta

from ..core.config import current_year
from ..models.pipeline import PipelineEntry

MONTH_NAMES = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

_FULL_NAMES = (
    "january", "february", "march", "april", "may", "june",
    "july", "august", "september", "october", "november", "december",
)

_MONTH_ALIASES = {name.lower(): name for name in MONTH_NAMES}
_MONTH_ALIASES.update({full: abbr for full, abbr in zip(_FULL_NAMES, MONTH_NAMES)})
_MONTH_ALIASES["sept"] = "Sep"


def normalize_month_name(value: Optional[str]) -> Optional[str]:
    """Map `Jan`, `january`, `Sept`, ... onto the canonical three-letter name."""
    if not value:
        return None
    return _MONTH_ALIASES.get(str(value).strip().lower())


def empty_month_map() -> Dict[str, float]:
    return {name: 0.0 for name in MONTH_NAMES}


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def round_currency(monthly: Mapping[str, float]) -> Dict[str, int]:
    """Whole-unit rounding for presentation only; never feed the result back into totals."""
    return {month: round_half_up(amount) for month, amount in monthly.items()}


def month_steps(start: Optional[date], end: Optional[date]) -> List[date]:
    """
    One date per calendar month from start to end inclusive.

    Each step is start + n months with the day clamped to the month length,
    so a range starting on the 31st still advances one month at a time.
    """
    if not start or not end or end < start:
        return []
    steps: List[date] = []
    n = 0
    while True:
        cursor = start + relativedelta(months=n)
        if cursor > end:
            break
        steps.append(cursor)
        n += 1
    return steps


def total_project_months(entry: PipelineEntry) -> int:
    return len(month_steps(entry.startDate, entry.endDate))


def active_months(entry: PipelineEntry, year: Optional[int] = None) -> List[str]:
    year = year or current_year()
    return [MONTH_NAMES[step.month - 1] for step in month_steps(entry.startDate, entry.endDate) if step.year == year]


def distribute_fees(
    entry: PipelineEntry,
    overrides: Optional[Mapping[str, float]] = None,
    year: Optional[int] = None,
) -> Dict[str, float]:
    """
    Spread entry.totalFees evenly over every month the project touches and keep
    the shares that land in the forecast year.

    Shares for months in other years are dropped rather than redistributed.
    Overrides replace the computed share for active months only.
    """
    year = year or current_year()
    monthly = empty_month_map()
    steps = month_steps(entry.startDate, entry.endDate)
    if not steps:
        return monthly

    share = float(entry.totalFees or 0) / len(steps)
    active = set()
    for step in steps:
        if step.year != year:
            continue
        name = MONTH_NAMES[step.month - 1]
        monthly[name] = share
        active.add(name)

    for month, amount in (overrides or {}).items():
        name = normalize_month_name(month)
        if name in active and amount is not None:
            monthly[name] = float(amount)

    return monthly
