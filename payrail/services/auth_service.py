"""
Authentication service — signup and login business logic.

Signup flow:
  1. Check if email is already registered
  2. Hash the password with Argon2id
  3. Create User + MerchantProfile in a single database transaction
  4. Return a JWT token so the merchant is immediately logged in

Login flow:
  1. Look up user by email
  2. Verify password against stored hash
  3. Return a JWT token

Login returns the same error for "wrong password" and "email not found" to
prevent user enumeration.
"""

from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payrail.exceptions import DuplicateEmailError, InvalidCredentialsError
from payrail.logging_config import get_logger
from payrail.models.merchant_profile import MerchantProfile
from payrail.models.user import User, UserType
from payrail.security import hash_password, verify_password, create_access_token


logger = get_logger(__name__)


async def signup(
    db: AsyncSession,
    email: str,
    password: str,
    full_name: str,
    country: str,
    currency: str,
    phone: str | None = None,
) -> tuple[User, str]:
    """
    Register a new merchant.

    Raises:
        DuplicateEmailError: If the email is already registered.
    """
    result = await db.execute(select(User).where(User.email == email))
    if result.scalar_one_or_none():
        raise DuplicateEmailError(email)

    user = User(
        email=email,
        hashed_password=hash_password(password),
        user_type=UserType.MEMBER,
    )
    db.add(user)
    await db.flush()

    profile = MerchantProfile(
        user_id=user.id,
        full_name=full_name,
        email=email,
        phone=phone,
        country=country.upper(),
        currency=currency.upper(),
    )
    db.add(profile)
    await db.flush()

    logger.info("merchant_signed_up", user_id=str(user.id), country=profile.country)
    token = create_access_token(data={"sub": str(user.id)})
    return user, token


async def login(
    db: AsyncSession,
    email: str,
    password: str,
) -> tuple[User, str]:
    """
    Raises:
        InvalidCredentialsError: If email doesn't exist or password is wrong.
    """
    result = await db.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()

    if user is None or not verify_password(password, user.hashed_password):
        logger.warning("login_failed", reason="bad_credentials")
        raise InvalidCredentialsError()

    if not user.is_active:
        logger.warning("login_failed", reason="inactive", user_id=str(user.id))
        raise InvalidCredentialsError()

    user.last_login_at = datetime.now(timezone.utc)
    await db.flush()
    logger.info("user_logged_in", user_id=str(user.id), user_type=user.user_type.value)

    token = create_access_token(data={"sub": str(user.id)})
    return user, token
