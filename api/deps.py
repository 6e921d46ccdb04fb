"""Shared API dependencies."""

import logging
from typing import Optional

from fastapi import Depends, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import AuthenticationRequiredError
from core.security import extract_bearer_token, verify_token
from db.models.user import User
from db.session import get_session
from services.access import Principal, ensure_admin

logger = logging.getLogger(__name__)


async def _user_for_token(token: str, db: AsyncSession) -> User:
    user_id = verify_token(token)
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalars().first()
    if not user:
        # Token outlived its account
        raise AuthenticationRequiredError("Invalid or expired token")
    return user


async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_session),
) -> User:
    """Return the user identified by the ``Authorization: Bearer`` header."""
    token = extract_bearer_token(request.headers.get("Authorization"))
    if not token:
        raise AuthenticationRequiredError("Authentication token required")
    return await _user_for_token(token, db)


async def get_current_principal(user: User = Depends(get_current_user)) -> Principal:
    return Principal.from_user(user)


async def get_optional_principal(
    request: Request,
    db: AsyncSession = Depends(get_session),
) -> Optional[Principal]:
    """Principal for callers that sent a token, ``None`` for anonymous ones.

    A token that is present but invalid is still rejected.
    """
    token = extract_bearer_token(request.headers.get("Authorization"))
    if not token:
        return None
    return Principal.from_user(await _user_for_token(token, db))


async def get_admin_principal(
    principal: Principal = Depends(get_current_principal),
) -> Principal:
    ensure_admin(principal)
    return principal
