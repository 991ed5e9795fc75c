from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from ..core.auth import require_admin
from ..models.user import ROLES, AuthenticatedUser
from ..services.roles_service import set_user_role

router = APIRouter()


class RoleAssignment(BaseModel):
    uid: str
    role: str


@router.post("/setRole")
async def set_role(
    payload: RoleAssignment,
    admin_user: AuthenticatedUser = Depends(require_admin),
):
    if payload.role not in ROLES:
        raise HTTPException(status_code=400, detail=f"role must be one of {', '.join(sorted(ROLES))}")
    await set_user_role(payload.uid, payload.role, admin_user.display_name)
    return {"ok": True, "uid": payload.uid, "role": payload.role}
