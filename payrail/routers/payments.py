"""
Payments router — start a collection for the authenticated merchant.

Endpoints:
  POST /payments — Route and initiate a payment, return the payer redirect URL
"""

import httpx
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from payrail.database import get_db
from payrail.dependencies import get_current_merchant, get_http_client
from payrail.models.user import User
from payrail.schemas.transaction import (
    PaymentCreateRequest,
    PaymentCreateResponse,
    TransactionResponse,
)
from payrail.services import payment_service

router = APIRouter()


@router.post(
    "",
    response_model=PaymentCreateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Initiate a payment",
)
async def create_payment(
    request: PaymentCreateRequest,
    user: User = Depends(get_current_merchant),
    db: AsyncSession = Depends(get_db),
    http_client: httpx.AsyncClient = Depends(get_http_client),
):
    """
    Initiate a payment to the authenticated merchant.

    The provider is chosen from the payment method and the merchant's
    country. The response carries the provider checkout URL the payer must
    be sent to. The transaction stays pending until the provider confirms.

    - 422 routing_unsupported: no rail for this method/country, or the
      provider does not accept the merchant currency
    - 404 not_found: the rail is not configured yet
    - 502 provider_unavailable: the provider rejected the request
    """
    transaction, initiation = await payment_service.create_payment(
        db,
        http_client,
        user,
        amount=request.amount,
        payment_method=request.payment_method,
        currency=request.currency,
        customer_name=request.customer_name,
        customer_email=request.customer_email,
        customer_phone=request.customer_phone,
        description=request.description,
        webhook_url=str(request.webhook_url) if request.webhook_url else None,
        success_url=str(request.success_url) if request.success_url else None,
    )
    return PaymentCreateResponse(
        transaction=TransactionResponse.model_validate(transaction),
        redirect_url=initiation.redirect_url,
        instructions=initiation.instructions,
    )
