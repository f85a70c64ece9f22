"""
Merchant service — profile lookup and withdrawal account setup.

All functions are scoped by the authenticated user's id, set by the
dependency layer. There is no way for a merchant to read or change another
merchant's profile through this service.
"""

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payrail.exceptions import InvalidInputError, MerchantProfileNotFoundError
from payrail.logging_config import get_logger
from payrail.models.merchant_profile import MerchantProfile
from payrail.providers.registry import PaymentMethod, WithdrawalAccountType, list_methods_for


logger = get_logger(__name__)


async def get_profile(db: AsyncSession, user_id: uuid.UUID) -> MerchantProfile:
    result = await db.execute(
        select(MerchantProfile).where(MerchantProfile.user_id == user_id)
    )
    profile = result.scalar_one_or_none()
    if profile is None:
        raise MerchantProfileNotFoundError()
    return profile


def available_payment_methods(profile: MerchantProfile) -> list[PaymentMethod]:
    return sorted(list_methods_for(profile.country), key=lambda method: method.value)


async def update_withdrawal_account(
    db: AsyncSession,
    profile: MerchantProfile,
    account_type: WithdrawalAccountType,
    mobile_provider: str | None = None,
    mobile_number: str | None = None,
    bank_name: str | None = None,
    bank_account_number: str | None = None,
    bank_account_name: str | None = None,
) -> MerchantProfile:
    """
    Replace the merchant's withdrawal destination.

    Switching type clears the fields of the other type so stale bank details
    are never sent to a mobile rail or the other way round.

    Raises:
        InvalidInputError: Required fields for the chosen type are missing.
    """
    if account_type == WithdrawalAccountType.MOBILE:
        if not mobile_number:
            raise InvalidInputError("A mobile number is required for mobile withdrawals")
        profile.mobile_provider = mobile_provider
        profile.mobile_number = mobile_number
        profile.bank_name = None
        profile.bank_account_number = None
        profile.bank_account_name = None
    else:
        if not bank_account_number or not bank_account_name:
            raise InvalidInputError(
                "Bank account number and account name are required for bank withdrawals"
            )
        profile.bank_name = bank_name
        profile.bank_account_number = bank_account_number
        profile.bank_account_name = bank_account_name
        profile.mobile_provider = None
        profile.mobile_number = None

    profile.withdrawal_account_type = WithdrawalAccountType(account_type).value
    await db.flush()
    await db.refresh(profile)
    logger.info(
        "withdrawal_account_updated",
        merchant_id=str(profile.id),
        account_type=profile.withdrawal_account_type,
    )
    return profile
