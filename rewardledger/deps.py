"""Shared FastAPI dependencies."""

from fastapi import Header

from rewardledger.core.exceptions import UnauthorizedError
from rewardledger.core.logging import bind_user_id
from rewardledger.core.security import bearer_token, verify


async def get_current_user_id(authorization: str | None = Header(default=None)) -> str:
    """Dependency: verify the bearer token and return the authenticated user id."""
    token = bearer_token(authorization)
    if not token:
        raise UnauthorizedError("Not authenticated")
    user_id = verify(token)
    if not user_id:
        raise UnauthorizedError("Invalid or expired token")
    bind_user_id(user_id)
    return user_id
