"""
Withdrawals router — pay the merchant balance out.

Endpoints:
  GET  /withdrawals/route — Which rail a withdrawal would use, and how long it takes
  POST /withdrawals       — Debit amount + fee and start the payout
"""

from decimal import Decimal

import httpx
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from payrail.database import get_db
from payrail.dependencies import get_current_merchant, get_http_client
from payrail.models.user import User
from payrail.schemas.transaction import (
    TransactionResponse,
    VirtualCardResponse,
    WithdrawalCreateRequest,
    WithdrawalCreateResponse,
    WithdrawalRouteResponse,
)
from payrail.services import merchant_service, withdrawal_service

router = APIRouter()


@router.get(
    "/route",
    response_model=WithdrawalRouteResponse,
    summary="Preview withdrawal routing",
)
async def get_withdrawal_route(
    user: User = Depends(get_current_merchant),
    db: AsyncSession = Depends(get_db),
):
    profile = await merchant_service.get_profile(db, user.id)
    return withdrawal_service.describe_route(profile)


@router.post(
    "",
    response_model=WithdrawalCreateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Withdraw funds",
)
async def create_withdrawal(
    request: WithdrawalCreateRequest,
    user: User = Depends(get_current_merchant),
    db: AsyncSession = Depends(get_db),
    http_client: httpx.AsyncClient = Depends(get_http_client),
):
    """
    Withdraw `amount` to the configured withdrawal account.

    The plan fee is added on top and the total is taken from the balance
    immediately. If the payout fails the total is refunded.

    Virtual card details (bank withdrawals) are returned in this response
    only. They are not stored and cannot be retrieved again.
    """
    transaction, initiation = await withdrawal_service.create_withdrawal(
        db,
        http_client,
        user,
        amount=request.amount,
        description=request.description,
    )
    return WithdrawalCreateResponse(
        transaction=TransactionResponse.model_validate(transaction),
        fee=Decimal(transaction.metadata_["fee"]),
        instructions=initiation.instructions,
        virtual_card=VirtualCardResponse(**initiation.sensitive) if initiation.sensitive else None,
    )
