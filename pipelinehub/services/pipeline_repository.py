import logging
from typing import Any, Dict, List, Type, TypeVar

from pydantic import BaseModel, ValidationError

from ..models.overhead import FreelancerCost
from ..models.pipeline import PipelineChange, PipelineEntry
from ..models.workflow import AppState, ChangeRequest
from .audit_log import build_pipeline_changelog, merge_changelog
from .project_codes import repair_project_codes
from .storage_service import CloudStorage

log = logging.getLogger(__name__)

PIPELINE_KEY = "pipeline-entries"
PROJECT_COUNTER_KEY = "pipeline-project-counter"
CHANGE_REQUESTS_KEY = "pipeline-change-requests"
MONTHLY_OVERRIDES_KEY = "pipeline-monthly-overrides"
FREELANCER_COSTS_KEY = "pipeline-freelancer-costs"
PIPELINE_CHANGELOG_KEY = "pipeline-changelog"
MONTH_LOCKS_KEY = "pipeline-month-locks"
MONTH_NOTES_KEY = "pipeline-month-notes"

# Collections that track the same projects under their own keys
QUOTES_KEY = "saltxc-all-quotes"
ANNUAL_PLAN_KEY = "pipeline-annual-plan"

# AppState field -> storage key
STATE_KEYS = {
    "entries": PIPELINE_KEY,
    "projectCounter": PROJECT_COUNTER_KEY,
    "changeRequests": CHANGE_REQUESTS_KEY,
    "monthlyOverrides": MONTHLY_OVERRIDES_KEY,
    "freelancerCosts": FREELANCER_COSTS_KEY,
    "auditLog": PIPELINE_CHANGELOG_KEY,
    "monthLocks": MONTH_LOCKS_KEY,
    "monthNotes": MONTH_NOTES_KEY,
}

TModel = TypeVar("TModel", bound=BaseModel)


def parse_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def parse_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def parse_models(value: Any, model: Type[TModel]) -> List[TModel]:
    items: List[TModel] = []
    for item in parse_list(value):
        try:
            items.append(model.model_validate(item))
        except ValidationError:
            log.warning("Skipping unreadable %s record", model.__name__)
    return items


def _parse_counter(value: Any) -> int:
    try:
        return max(1, int(value))
    except (TypeError, ValueError):
        return 1


def _parse_overrides(value: Any) -> Dict[str, Dict[str, float]]:
    overrides: Dict[str, Dict[str, float]] = {}
    for code, months in parse_dict(value).items():
        amounts: Dict[str, float] = {}
        for month, amount in parse_dict(months).items():
            if amount is None:
                continue
            try:
                amounts[month] = float(amount)
            except (TypeError, ValueError):
                log.warning("Skipping unreadable %s override for %s: %r", month, code, amount)
        if amounts:
            overrides[code] = amounts
    return overrides


def _month_map(value: Any) -> Dict[int, Any]:
    result: Dict[int, Any] = {}
    for key, item in parse_dict(value).items():
        try:
            index = int(key)
        except (TypeError, ValueError):
            continue
        if 0 <= index <= 11:
            result[index] = item
    return result


def serialize_state(state: AppState) -> Dict[str, Any]:
    data = state.model_dump(mode="json")
    serialized = {key: data[field] for field, key in STATE_KEYS.items()}
    # JSON object keys are strings
    serialized[MONTH_LOCKS_KEY] = {str(k): v for k, v in state.monthLocks.items()}
    serialized[MONTH_NOTES_KEY] = {str(k): v for k, v in state.monthNotes.items()}
    return serialized


async def load_state(storage: CloudStorage) -> AppState:
    """
    Build the AppState from storage, repairing project codes on the way in.

    Repairs are written back immediately so every session sees the same codes.
    """
    if not storage.hydrated:
        await storage.hydrate()

    entries = parse_models(storage.get_item(PIPELINE_KEY), PipelineEntry)
    counter = _parse_counter(storage.get_item(PROJECT_COUNTER_KEY))
    entries, counter, repaired = repair_project_codes(entries, counter)

    stored_log = [item for item in parse_list(storage.get_item(PIPELINE_CHANGELOG_KEY)) if isinstance(item, dict)]
    if not stored_log:
        stored_log = merge_changelog([], build_pipeline_changelog(entries, "system"))

    overrides = _parse_overrides(storage.get_item(MONTHLY_OVERRIDES_KEY))

    state = AppState(
        entries=entries,
        changeRequests=parse_models(storage.get_item(CHANGE_REQUESTS_KEY), ChangeRequest),
        monthlyOverrides=overrides,
        monthLocks={k: bool(v) for k, v in _month_map(storage.get_item(MONTH_LOCKS_KEY)).items()},
        monthNotes={k: str(v) for k, v in _month_map(storage.get_item(MONTH_NOTES_KEY)).items()},
        auditLog=parse_models(stored_log, PipelineChange),
        projectCounter=counter,
        freelancerCosts=parse_models(storage.get_item(FREELANCER_COSTS_KEY), FreelancerCost),
    )

    if repaired:
        serialized = serialize_state(state)
        await storage.set_item(PIPELINE_KEY, serialized[PIPELINE_KEY])
        await storage.set_item(PROJECT_COUNTER_KEY, serialized[PROJECT_COUNTER_KEY])
    return state


async def persist_state(storage: CloudStorage, before: AppState, after: AppState) -> bool:
    """Write every collection that changed. Returns False if any write failed."""
    old, new = serialize_state(before), serialize_state(after)
    ok = True
    for key, value in new.items():
        if old.get(key) != value:
            ok = await storage.set_item(key, value) and ok
    return ok


def _quote_matches(quote: Any, project_code: str) -> bool:
    if not isinstance(quote, dict):
        return False
    project = quote.get("project") if isinstance(quote.get("project"), dict) else {}
    return quote.get("projectNumber") == project_code or project.get("projectNumber") == project_code


def _plan_row_matches(row: Any, project_code: str) -> bool:
    return isinstance(row, dict) and (row.get("projectCode") == project_code or row.get("id") == project_code)


async def purge_mirrors(storage: CloudStorage, project_code: str) -> bool:
    """
    Remove a deleted project from the quotes and annual-plan collections.

    Each collection is written separately; there is no transaction across them.
    """
    ok = True
    for key, matches in ((QUOTES_KEY, _quote_matches), (ANNUAL_PLAN_KEY, _plan_row_matches)):
        rows = parse_list(storage.get_item(key))
        kept = [row for row in rows if not matches(row, project_code)]
        if len(kept) != len(rows):
            log.info("Purging %d %s records for %s", len(rows) - len(kept), key, project_code)
            ok = await storage.set_item(key, kept) and ok
    return ok
