from typing import Callable, Dict, Iterable, List, Mapping, Optional

from ..core.config import current_year, settings
from ..models.forecast import ClientForecast, CostRatio, ForecastTotals, MonthCostRatio
from ..models.pipeline import DEPARTMENTS, EntryStatus, PipelineEntry
from .fee_distribution import MONTH_NAMES, active_months, empty_month_map, normalize_month_name, total_project_months

FeeSelector = Callable[[PipelineEntry], float]

# Probability weights. Entries under review or awaiting deletion still count as open deals.
STATUS_MULTIPLIERS: Dict[EntryStatus, float] = {
    EntryStatus.CONFIRMED: 1.0,
    EntryStatus.OPEN: 0.9,
    EntryStatus.HIGH_PITCH: 0.75,
    EntryStatus.MEDIUM_PITCH: 0.5,
    EntryStatus.LOW_PITCH: 0.1,
    EntryStatus.WHITESPACE: 0.0,
    EntryStatus.FINANCE_REVIEW: 0.9,
    EntryStatus.PENDING_DELETION: 0.9,
}


def status_multiplier(status: EntryStatus) -> float:
    return STATUS_MULTIPLIERS.get(status, 0.0)


def total_fees(entry: PipelineEntry) -> float:
    return float(entry.totalFees or 0)


def department_selector(department: str) -> FeeSelector:
    if department not in DEPARTMENTS:
        raise ValueError(f"Unknown department: {department}")

    def _select(entry: PipelineEntry) -> float:
        return entry.department_fee(department)

    return _select


def _monthly_shares(
    entry: PipelineEntry,
    amount: float,
    year: int,
    overrides: Optional[Mapping[str, float]],
) -> Dict[str, float]:
    months = total_project_months(entry)
    if months == 0:
        return {}
    per_month = amount / months
    shares = {month: per_month for month in active_months(entry, year)}
    for month, value in (overrides or {}).items():
        name = normalize_month_name(month)
        if name in shares and value is not None:
            shares[name] = float(value)
    return shares


def aggregate_forecast(
    entries: Iterable[PipelineEntry],
    fee_selector: Optional[FeeSelector] = None,
    year: Optional[int] = None,
    overrides: Optional[Mapping[str, Mapping[str, float]]] = None,
) -> ForecastTotals:
    """
    Month-by-month potential, weighted and confirmed fees across entries.

    Overrides only make sense for the total-fee view; department views
    ignore them.
    """
    selector = fee_selector or total_fees
    year = year or current_year()
    use_overrides = fee_selector is None and overrides

    potential = empty_month_map()
    weighted = empty_month_map()
    confirmed = empty_month_map()

    for entry in entries:
        amount = selector(entry)
        if amount <= 0:
            continue
        entry_overrides = overrides.get(entry.projectCode or "") if use_overrides else None
        multiplier = status_multiplier(entry.status)
        for month, share in _monthly_shares(entry, amount, year, entry_overrides).items():
            potential[month] += share
            weighted[month] += share * multiplier
            if entry.status == EntryStatus.CONFIRMED:
                confirmed[month] += share

    return ForecastTotals(
        potentialByMonth=potential,
        weightedByMonth=weighted,
        confirmedByMonth=confirmed,
    )


def aggregate_by_department(
    entries: Iterable[PipelineEntry],
    year: Optional[int] = None,
) -> Dict[str, ForecastTotals]:
    entries = list(entries)
    return {
        department: aggregate_forecast(entries, department_selector(department), year)
        for department in DEPARTMENTS
    }


def aggregate_by_client(
    entries: Iterable[PipelineEntry],
    year: Optional[int] = None,
    overrides: Optional[Mapping[str, Mapping[str, float]]] = None,
) -> List[ClientForecast]:
    year = year or current_year()
    by_client: Dict[str, ClientForecast] = {}
    for entry in entries:
        amount = total_fees(entry)
        if amount <= 0:
            continue
        shares = _monthly_shares(entry, amount, year, (overrides or {}).get(entry.projectCode or ""))
        if not shares:
            continue
        name = entry.client or "Unassigned"
        row = by_client.setdefault(name, ClientForecast(client=name))
        yearly = sum(shares.values())
        row.potential += yearly
        row.weighted += yearly * status_multiplier(entry.status)
        if entry.status == EntryStatus.CONFIRMED:
            row.confirmed += yearly
        row.projects += 1
    return sorted(by_client.values(), key=lambda r: r.client.lower())


def _ratio(amount: float, cost: float, threshold: float) -> CostRatio:
    if cost <= 0:
        return CostRatio(ratio=0.0, hot=False)
    ratio = amount / cost
    return CostRatio(ratio=ratio, hot=ratio > threshold)


def cost_ratio_view(
    totals: ForecastTotals,
    monthly_cost: Mapping[str, float],
    threshold: Optional[float] = None,
) -> List[MonthCostRatio]:
    """Fees per dollar of staffing cost; `hot` marks months that out-earn cost by more than the threshold."""
    threshold = settings.hot_ratio_threshold if threshold is None else threshold
    months: List[MonthCostRatio] = []
    for month in MONTH_NAMES:
        cost = float(monthly_cost.get(month, 0) or 0)
        months.append(
            MonthCostRatio(
                month=month,
                cost=cost,
                weighted=_ratio(totals.weightedByMonth[month], cost, threshold),
                potential=_ratio(totals.potentialByMonth[month], cost, threshold),
                confirmed=_ratio(totals.confirmedByMonth[month], cost, threshold),
            )
        )
    return months
