"""Tests for staffing allocation summaries built from saved project plans."""

from datetime import date

from pipelinehub.models.allocation import Assignment, DateRange, ProjectPlan
from pipelinehub.services.allocation_service import (
    allocation_for_range,
    allocation_summary,
    month_ranges,
    projects_for_person,
    week_ranges,
)

# Wednesday
TODAY = date(2025, 3, 12)


def _assignment(assignee, start, end, allocation):
    return Assignment(assignee=assignee, startDate=start, endDate=end, allocation=allocation)


def test_overlapping_assignments_are_capped_at_one_hundred():
    this_week = week_ranges(TODAY)[0]
    assignments = [
        _assignment("Dana", "2025-03-01", "2025-03-10", 60),
        _assignment("Dana", "2025-03-14", "2025-03-31", 70),
    ]

    assert allocation_for_range(assignments, "Dana", this_week) == 100


def test_overlap_is_inclusive_at_both_ends():
    window = DateRange(label="day", start=date(2025, 3, 10), end=date(2025, 3, 10))
    assignments = [
        _assignment("Dana", "2025-03-01", "2025-03-10", 20),
        _assignment("Dana", "2025-03-10", "2025-03-20", 30),
        _assignment("Dana", "2025-03-11", "2025-03-20", 40),
    ]

    assert allocation_for_range(assignments, "Dana", window) == 50


def test_other_people_and_open_ended_assignments_are_ignored():
    window = week_ranges(TODAY)[0]
    assignments = [
        _assignment("Alex", "2025-03-01", "2025-03-31", 80),
        _assignment("Dana", "2025-03-01", None, 80),
        _assignment(" Dana ", "2025-03-01", "2025-03-31", 25),
    ]

    assert allocation_for_range(assignments, "Dana", window) == 25


def test_negative_allocation_is_floored_at_zero():
    window = week_ranges(TODAY)[0]

    assert allocation_for_range([_assignment("Dana", "2025-03-01", "2025-03-31", -20)], "Dana", window) == 0


def test_weeks_start_on_sunday():
    this_week, next_week = week_ranges(TODAY)

    assert this_week.start == date(2025, 3, 9)
    assert this_week.end == date(2025, 3, 15)
    assert next_week.start == date(2025, 3, 16)
    assert week_ranges(date(2025, 3, 9))[0].start == date(2025, 3, 9)
    assert week_ranges(date(2025, 3, 15))[0].start == date(2025, 3, 9)


def test_month_ranges_are_calendar_months():
    this_month, next_month = month_ranges(date(2025, 1, 31))

    assert (this_month.start, this_month.end) == (date(2025, 1, 1), date(2025, 1, 31))
    assert (next_month.start, next_month.end) == (date(2025, 2, 1), date(2025, 2, 28))


def _quote():
    return {
        "id": "q-1",
        "project": {"projectNumber": "P0001-25", "clientName": "Acme", "projectName": "Spring Launch"},
        "pmData": {
            "resourceAssignments": {
                "Phase 1": {
                    "creative": [
                        {"assignee": "Dana", "startDate": "2025-03-01", "endDate": "2025-03-31", "allocation": "50"},
                    ],
                    "studio": [
                        {"assignee": "Dana", "startDate": "2025-04-01", "endDate": "2025-04-30", "allocation": 30},
                    ],
                }
            },
            "workback": [{"name": "Kickoff", "tasks": [{"name": "Brief", "owner": "Lee"}]}],
        },
    }


def test_plan_is_read_from_a_saved_quote():
    plan = ProjectPlan.from_quote(_quote())

    assert plan.projectNumber == "P0001-25"
    assert plan.label == "Acme - Spring Launch"
    assert [a.allocation for a in plan.assignments()] == [50, 30]
    assert [t.owner for t in plan.tasks()] == ["Lee"]


def test_projects_include_task_owners():
    plans = [ProjectPlan.from_quote(_quote())]

    assert [p.id for p in projects_for_person(plans, "Dana")] == ["q-1"]
    assert [p.id for p in projects_for_person(plans, "Lee")] == ["q-1"]
    assert projects_for_person(plans, "Alex") == []


def test_summary_reports_weeks_and_months():
    summary = allocation_summary([ProjectPlan.from_quote(_quote())], "Dana", TODAY)

    assert [(r.label, r.allocation) for r in summary.weekly] == [("This Week", 50), ("Next Week", 50)]
    assert [(r.label, r.allocation) for r in summary.monthly] == [("This Month", 50), ("Next Month", 30)]
