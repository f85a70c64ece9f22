"""
Merchant router — the authenticated merchant's own profile.

Endpoints:
  GET /merchants/me                       — Profile and balance
  GET /merchants/me/payment-methods       — Rails available in the merchant's country
  PUT /merchants/me/withdrawal-account    — Set the withdrawal destination
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from payrail.database import get_db
from payrail.dependencies import get_current_merchant
from payrail.models.user import User
from payrail.schemas.merchant import (
    MerchantProfileResponse,
    PaymentMethodsResponse,
    WithdrawalAccountRequest,
)
from payrail.services import merchant_service

router = APIRouter()


@router.get(
    "/me",
    response_model=MerchantProfileResponse,
    summary="Get my merchant profile",
)
async def get_my_profile(
    user: User = Depends(get_current_merchant),
    db: AsyncSession = Depends(get_db),
):
    return await merchant_service.get_profile(db, user.id)


@router.get(
    "/me/payment-methods",
    response_model=PaymentMethodsResponse,
    summary="List payment methods available to my payers",
)
async def get_my_payment_methods(
    user: User = Depends(get_current_merchant),
    db: AsyncSession = Depends(get_db),
):
    profile = await merchant_service.get_profile(db, user.id)
    return PaymentMethodsResponse(
        country=profile.country,
        methods=merchant_service.available_payment_methods(profile),
    )


@router.put(
    "/me/withdrawal-account",
    response_model=MerchantProfileResponse,
    summary="Set my withdrawal account",
)
async def update_my_withdrawal_account(
    request: WithdrawalAccountRequest,
    user: User = Depends(get_current_merchant),
    db: AsyncSession = Depends(get_db),
):
    """
    Choose where withdrawals go: a mobile wallet or a bank account.

    Mobile wallets in MTN MoMo countries are paid instantly; bank accounts in
    supported countries receive a virtual card. Other destinations are
    accepted but need manual processing.
    """
    profile = await merchant_service.get_profile(db, user.id)
    return await merchant_service.update_withdrawal_account(
        db,
        profile,
        account_type=request.account_type,
        mobile_provider=request.mobile_provider,
        mobile_number=request.mobile_number,
        bank_name=request.bank_name,
        bank_account_number=request.bank_account_number,
        bank_account_name=request.bank_account_name,
    )
