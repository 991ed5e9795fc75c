from fastapi import HTTPException

from ..core.results import ServiceResult
from ..models.workflow import AppState, CommandResponse, WorkflowOutcome
from ..services.pipeline_repository import persist_state, purge_mirrors
from ..services.storage_service import CloudStorage


def raise_for_failure(result: ServiceResult) -> None:
    if not result.is_success:
        raise HTTPException(status_code=result.error.http_status, detail=result.error.to_dict())


async def commit(storage: CloudStorage, before: AppState, result: ServiceResult[WorkflowOutcome]) -> CommandResponse:
    """Persist a successful command; `persisted` is False when a write failed and only memory holds the change."""
    raise_for_failure(result)
    outcome = result.data
    persisted = await persist_state(storage, before, outcome.state)
    if outcome.purgedCode:
        persisted = await purge_mirrors(storage, outcome.purgedCode) and persisted
    return CommandResponse(ok=True, persisted=persisted, entry=outcome.entry, request=outcome.request)
