from typing import Optional

from pydantic import BaseModel

ROLES = {"admin", "pm", "user"}


def resolve_role(raw_role: Optional[str]) -> str:
    return raw_role if raw_role in ROLES else "user"


class AuthenticatedUser(BaseModel):
    uid: str
    email: Optional[str] = None
    role: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def display_name(self) -> str:
        """Name used to attribute change requests and audit log records."""
        return self.email or self.uid
