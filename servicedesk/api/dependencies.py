import uuid
from dataclasses import dataclass

import jwt
from fastapi import Depends, Header
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from servicedesk.database import get_db
from servicedesk.exceptions import ForbiddenError, UnauthorizedError
from servicedesk.models.base import UserRole
from servicedesk.models.user import User
from servicedesk.services import auth_service


@dataclass
class CurrentUser:
    user: User


async def get_current_user(
    authorization: str | None = Header(None),
    db: AsyncSession = Depends(get_db),
) -> CurrentUser:
    """Resolve the bearer token to an active user."""
    if not authorization or not authorization.startswith("Bearer "):
        raise UnauthorizedError("Authentication required")

    token = authorization[7:]
    try:
        payload = auth_service.decode_token(token)
        user_id = uuid.UUID(payload["sub"])
    except (jwt.InvalidTokenError, KeyError, ValueError):
        raise UnauthorizedError("Invalid or expired token")
    if payload.get("type") != "access":
        raise UnauthorizedError("Invalid token type")

    result = await db.execute(select(User).where(User.id == user_id, User.is_active == True))
    user = result.scalar_one_or_none()
    if not user:
        raise UnauthorizedError("User not found or inactive")
    return CurrentUser(user=user)


def require_role(*roles: UserRole):
    """Dependency factory that checks if the current user has one of the required roles."""
    async def role_checker(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if current_user.user.role not in roles:
            raise ForbiddenError(
                f"Role {current_user.user.role.value} not authorized. Required: {[r.value for r in roles]}"
            )
        return current_user
    return role_checker

