import logging

from firebase_admin import auth as firebase_auth

from ..core.auth import _init_firebase_app
from ..models.user import ROLES

log = logging.getLogger(__name__)


async def set_user_role(uid: str, role: str, actor: str):
    """Store the role as a Firebase custom claim; it takes effect on the user's next token refresh."""
    if role not in ROLES:
        raise ValueError(f"Unknown role: {role}")
    _init_firebase_app()
    firebase_auth.set_custom_user_claims(uid, {"role": role})
    log.info("%s set role of %s to %s", actor, uid, role)
