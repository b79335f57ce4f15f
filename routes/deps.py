from fastapi import Header
from typing import Optional
from pydantic import ValidationError
from schemas.auth import AuthContext
from services.exceptions import AuthRequiredError, ForbiddenError


async def get_auth_context(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None)
) -> AuthContext:
    """Identity set by the upstream auth layer."""
    if not x_user_id or not x_user_role:
        raise AuthRequiredError()
    try:
        return AuthContext(user_id=x_user_id.strip(), role=x_user_role.strip().lower())
    except ValidationError:
        raise AuthRequiredError()


def require_barber(actor: AuthContext) -> AuthContext:
    if not actor.is_barber:
        raise ForbiddenError("Only barbers can do this")
    return actor
