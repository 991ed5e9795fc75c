from datetime import date, timedelta
from typing import Iterable, List

from dateutil.relativedelta import relativedelta

from ..models.allocation import AllocationSummary, Assignment, DateRange, ProjectPlan, RangeAllocation


def overlaps(assignment: Assignment, window: DateRange) -> bool:
    return assignment.startDate <= window.end and assignment.endDate >= window.start


def allocation_for_range(assignments: Iterable[Assignment], person: str, window: DateRange) -> float:
    """Summed allocation of `person` across assignments touching the window, clamped to 0..100."""
    total = 0.0
    for assignment in assignments:
        if not assignment.is_for(person):
            continue
        if not assignment.startDate or not assignment.endDate:
            continue
        if overlaps(assignment, window):
            total += assignment.allocation
    return min(100.0, max(0.0, total))


def week_ranges(today: date) -> List[DateRange]:
    # Weeks start on Sunday; date.weekday() has Monday == 0
    start_of_week = today - timedelta(days=(today.weekday() + 1) % 7)
    start_of_next = start_of_week + timedelta(days=7)
    return [
        DateRange(label="This Week", start=start_of_week, end=start_of_week + timedelta(days=6)),
        DateRange(label="Next Week", start=start_of_next, end=start_of_next + timedelta(days=6)),
    ]


def month_ranges(today: date) -> List[DateRange]:
    start_of_month = today.replace(day=1)
    start_of_next = start_of_month + relativedelta(months=1)
    return [
        DateRange(label="This Month", start=start_of_month, end=start_of_next - timedelta(days=1)),
        DateRange(
            label="Next Month",
            start=start_of_next,
            end=start_of_next + relativedelta(months=1) - timedelta(days=1),
        ),
    ]


def projects_for_person(plans: Iterable[ProjectPlan], person: str) -> List[ProjectPlan]:
    """Plans where the person holds an assignment or owns a workback task."""
    matches = []
    for plan in plans:
        if any(a.is_for(person) for a in plan.assignments()):
            matches.append(plan)
        elif any(t.owner.strip() == person.strip() for t in plan.tasks()):
            matches.append(plan)
    return matches


def allocation_summary(plans: Iterable[ProjectPlan], person: str, today: date) -> AllocationSummary:
    assignments = [a for plan in plans for a in plan.assignments()]
    return AllocationSummary(
        person=person,
        weekly=[
            RangeAllocation(label=w.label, allocation=allocation_for_range(assignments, person, w))
            for w in week_ranges(today)
        ],
        monthly=[
            RangeAllocation(label=m.label, allocation=allocation_for_range(assignments, person, m))
            for m in month_ranges(today)
        ],
    )
