from fastapi import APIRouter, Depends, HTTPException

from ..core.auth import get_current_user, require_admin
from ..models.storage import StorageListResponse, StorageResponse, StorageWriteRequest
from ..models.user import AuthenticatedUser
from ..services.pipeline_repository import STATE_KEYS
from ..services.storage_service import CloudStorage, get_storage

router = APIRouter()

# Workflow collections only change through the pipeline commands
PROTECTED_KEYS = set(STATE_KEYS.values())


def _check_writable(key: str) -> None:
    if key in PROTECTED_KEYS:
        raise HTTPException(status_code=409, detail=f"{key} is managed by the pipeline endpoints")


@router.get("/storage", response_model=StorageListResponse)
async def list_storage(
    user: AuthenticatedUser = Depends(get_current_user),
    storage: CloudStorage = Depends(get_storage),
):
    return {"values": storage.items()}


@router.get("/storage/{key}", response_model=StorageResponse)
async def read_storage_value(
    key: str,
    user: AuthenticatedUser = Depends(get_current_user),
    storage: CloudStorage = Depends(get_storage),
):
    value = storage.get_item(key)
    if value is None:
        raise HTTPException(status_code=404, detail="Not found")
    return {"value": value}


@router.put("/storage/{key}", response_model=StorageResponse)
async def write_storage_value(
    key: str,
    payload: StorageWriteRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    storage: CloudStorage = Depends(get_storage),
):
    _check_writable(key)
    persisted = await storage.set_item(key, payload.value)
    return {"value": payload.value, "persisted": persisted}


@router.delete("/storage/{key}")
async def remove_storage_value(
    key: str,
    admin_user: AuthenticatedUser = Depends(require_admin),
    storage: CloudStorage = Depends(get_storage),
):
    _check_writable(key)
    persisted = await storage.remove_item(key)
    return {"ok": True, "persisted": persisted}
