from datetime import timedelta
from typing import Dict, Iterable, List, Optional, Sequence

from psycopg.types.json import Jsonb

from ..core.database import execute, fetch, fetchrow
from ..models.overhead import FreelancerCost, OverheadEmployee
from ..models.pipeline import parse_date
from .fee_distribution import MONTH_NAMES, empty_month_map, normalize_month_name, round_half_up

BURDEN_RATES = {"US": 0.15, "Canada": 0.20}
DEFAULT_BURDEN = 0.20

overhead_tables_ready = False


def burden_rate(location: Optional[str]) -> float:
    return BURDEN_RATES.get((location or "").strip(), DEFAULT_BURDEN)


def monthly_cost(row: OverheadEmployee) -> Dict[str, float]:
    """
    Loaded salary cost of one overhead row bucketed by month.

    Each calendar day in the row's range contributes one seventh of the
    weekly cost; buckets are rounded to the nearest whole unit.
    """
    result = empty_month_map()
    if not row.start_date or not row.end_date or not row.annual_salary or not row.allocation_percent:
        return result

    start = parse_date(row.start_date, is_end=False)
    end = parse_date(row.end_date, is_end=True)
    if start is None or end is None or end < start:
        return result

    loaded_annual = row.annual_salary * (1 + burden_rate(row.location)) * (row.allocation_percent / 100)
    daily_cost = loaded_annual / 52 / 7

    day = start
    while day <= end:
        result[MONTH_NAMES[day.month - 1]] += daily_cost
        day += timedelta(days=1)

    return {month: float(round_half_up(amount)) for month, amount in result.items()}


def total_staffing_cost(
    employees: Iterable[OverheadEmployee],
    freelancers: Iterable[FreelancerCost],
    department: Optional[str] = None,
) -> Dict[str, float]:
    totals = empty_month_map()
    for employee in employees:
        if department and employee.department != department:
            continue
        for month, amount in monthly_cost(employee).items():
            totals[month] += amount
    for cost in freelancers:
        if department and cost.department != department:
            continue
        month = normalize_month_name(cost.month)
        if month:
            totals[month] += float(cost.amount or 0)
    return totals


async def _ensure_table():
    global overhead_tables_ready
    if overhead_tables_ready:
        return
    await execute(
        """
        CREATE EXTENSION IF NOT EXISTS "pgcrypto";
        CREATE TABLE IF NOT EXISTS overhead_employees (
          id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
          user_id TEXT NOT NULL,
          department TEXT NOT NULL,
          employee_name TEXT NOT NULL,
          role TEXT NOT NULL,
          location TEXT,
          annual_salary NUMERIC NOT NULL,
          allocation_percent NUMERIC NOT NULL,
          start_date DATE,
          end_date DATE,
          monthly_allocations JSONB NOT NULL DEFAULT '{}'::jsonb,
          created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
          updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
          created_by TEXT,
          updated_by TEXT
        );
        CREATE INDEX IF NOT EXISTS overhead_user_idx ON overhead_employees(user_id);
        CREATE INDEX IF NOT EXISTS overhead_department_idx ON overhead_employees(department);
        """
    )
    overhead_tables_ready = True


def _to_employee(row: dict) -> OverheadEmployee:
    row = dict(row)
    row["id"] = str(row["id"]) if row.get("id") is not None else None
    row["annual_salary"] = float(row.get("annual_salary") or 0)
    row["allocation_percent"] = float(row.get("allocation_percent") or 0)
    return OverheadEmployee(**row)


async def list_overhead_employees(scope: str) -> List[OverheadEmployee]:
    await _ensure_table()
    rows = await fetch(
        "SELECT * FROM overhead_employees WHERE user_id = %s ORDER BY department ASC, employee_name ASC",
        [scope],
    )
    return [_to_employee(r) for r in rows]


async def upsert_overhead_employees(
    scope: str, employees: Sequence[OverheadEmployee], actor: Optional[str]
) -> List[OverheadEmployee]:
    await _ensure_table()
    results: List[OverheadEmployee] = []
    for emp in employees:
        data = emp.model_dump()
        saved = await fetchrow(
            """
            INSERT INTO overhead_employees (
              id, user_id, department, employee_name, role, location,
              annual_salary, allocation_percent, start_date, end_date,
              monthly_allocations, created_by, updated_by
            )
            VALUES (
              COALESCE(%(id)s::uuid, gen_random_uuid()), %(user_id)s, %(department)s, %(employee_name)s, %(role)s,
              %(location)s, %(annual_salary)s, %(allocation_percent)s, %(start_date)s, %(end_date)s,
              %(monthly_allocations)s, %(created_by)s, %(updated_by)s
            )
            ON CONFLICT (id) DO UPDATE SET
              department = EXCLUDED.department,
              employee_name = EXCLUDED.employee_name,
              role = EXCLUDED.role,
              location = EXCLUDED.location,
              annual_salary = EXCLUDED.annual_salary,
              allocation_percent = EXCLUDED.allocation_percent,
              start_date = EXCLUDED.start_date,
              end_date = EXCLUDED.end_date,
              monthly_allocations = EXCLUDED.monthly_allocations,
              updated_at = now(),
              updated_by = EXCLUDED.updated_by
            RETURNING *;
            """,
            {
                "id": data.get("id"),
                "user_id": scope,
                "department": data.get("department"),
                "employee_name": data.get("employee_name"),
                "role": data.get("role"),
                "location": data.get("location"),
                "annual_salary": data.get("annual_salary"),
                "allocation_percent": data.get("allocation_percent"),
                "start_date": data.get("start_date"),
                "end_date": data.get("end_date"),
                # Stored months always reflect the current salary inputs
                "monthly_allocations": Jsonb(monthly_cost(emp)),
                "created_by": data.get("created_by") or actor,
                "updated_by": actor or data.get("updated_by") or data.get("created_by"),
            },
        )
        if saved:
            results.append(_to_employee(saved))
    return results


async def delete_overhead_employee(scope: str, emp_id: str):
    await _ensure_table()
    await execute("DELETE FROM overhead_employees WHERE user_id = %s AND id = %s", [scope, emp_id])
