"""
FastAPI dependencies for authentication, authorization and outbound HTTP.

  get_current_user (JWT -> User)
      ├── get_current_merchant (User -> User)   [MEMBER role]
      └── require_admin (User -> User)          [ADMIN role]

  get_http_client -> httpx.AsyncClient          [one per request]

Role-based access control:
  - MEMBER: A merchant. Can only see and act on their own profile and
    transactions.
  - ADMIN: Platform operator. Manages provider configurations and reads
    every transaction, but cannot initiate payments or withdrawals.

Every protected endpoint declares one of these as a parameter. If the
dependency fails, the request is rejected before the route handler runs.
"""

import uuid
from collections.abc import AsyncIterator

import httpx
from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payrail.config import settings
from payrail.database import get_db
from payrail.exceptions import AccessDeniedError, AuthRequiredError
from payrail.models.user import User, UserType
from payrail.security import decode_access_token


# auto_error=False so a missing header surfaces as AuthRequiredError with the
# same body shape as every other domain error
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


async def get_current_user(
    token: str | None = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Extract and validate the JWT token, then return the corresponding User.

    Raises:
        AuthRequiredError: Missing, expired or tampered token, or unknown /
            inactive user.
    """
    if not token:
        raise AuthRequiredError("Not authenticated")

    try:
        payload = decode_access_token(token)
        user_id_str: str | None = payload.get("sub")
        if user_id_str is None:
            raise AuthRequiredError()
        user_id = uuid.UUID(user_id_str)
    except (JWTError, ValueError):
        raise AuthRequiredError()

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if user is None or not user.is_active:
        raise AuthRequiredError()

    return user


async def get_current_merchant(
    user: User = Depends(get_current_user),
) -> User:
    """
    Require a merchant (MEMBER) user.

    Admin users are blocked from merchant endpoints so that operator accounts
    can never move money.
    """
    if user.user_type == UserType.ADMIN:
        raise AccessDeniedError(
            "Admin accounts cannot access merchant endpoints. Use /admin/* endpoints."
        )
    return user


async def require_admin(
    user: User = Depends(get_current_user),
) -> User:
    if user.user_type != UserType.ADMIN:
        raise AccessDeniedError("Admin access required")
    return user


async def get_http_client() -> AsyncIterator[httpx.AsyncClient]:
    """
    Outbound HTTP client for provider and merchant-webhook calls.

    Scoped to the request; every call is bounded by PROVIDER_TIMEOUT_SECONDS.
    Tests override this dependency with a client on httpx.MockTransport.
    """
    async with httpx.AsyncClient(
        timeout=httpx.Timeout(settings.PROVIDER_TIMEOUT_SECONDS),
    ) as client:
        yield client
