from typing import Any, Dict, Optional
from pydantic import BaseModel


class StorageWriteRequest(BaseModel):
    value: Optional[Any] = None


class StorageResponse(BaseModel):
    value: Optional[Any] = None
    persisted: bool = True


class StorageListResponse(BaseModel):
    values: Dict[str, Any]
