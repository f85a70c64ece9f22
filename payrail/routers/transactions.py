"""
Transactions router — history and the manual status check.

Endpoints:
  GET  /transactions               — My payments and withdrawals
  GET  /transactions/{id}          — One of my transactions
  POST /transactions/check-status  — Ask the provider now and reconcile
"""

import uuid

import httpx
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from payrail.database import get_db
from payrail.dependencies import get_current_merchant, get_http_client
from payrail.models.user import User
from payrail.schemas.transaction import (
    StatusCheckRequest,
    StatusCheckResponse,
    TransactionResponse,
)
from payrail.services import reconciliation_service, transaction_service

router = APIRouter()


@router.get(
    "",
    response_model=list[TransactionResponse],
    summary="List my transactions",
)
async def list_transactions(
    type: str | None = Query(None, pattern="^(payment|withdrawal)$"),
    status: str | None = Query(None, pattern="^(pending|completed|failed)$"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user: User = Depends(get_current_merchant),
    db: AsyncSession = Depends(get_db),
):
    return await transaction_service.get_transactions(
        db, user.id, transaction_type=type, status=status, limit=limit, offset=offset
    )


@router.post(
    "/check-status",
    response_model=StatusCheckResponse,
    summary="Check a transaction's status with the provider",
)
async def check_status(
    request: StatusCheckRequest,
    user: User = Depends(get_current_merchant),
    db: AsyncSession = Depends(get_db),
    http_client: httpx.AsyncClient = Depends(get_http_client),
):
    """
    Poll the provider for a pending transaction and apply the answer.

    Safe to call repeatedly: a terminal transaction is returned unchanged
    without contacting the provider.
    """
    result = await reconciliation_service.check_transaction_status(
        db, http_client, request.transaction_id, user
    )
    await reconciliation_service.publish_transition(db, http_client, result)
    return StatusCheckResponse(
        transaction=TransactionResponse.model_validate(result.transaction),
        outcome=result.outcome.value,
        previous_status=result.previous_status,
    )


@router.get(
    "/{transaction_id}",
    response_model=TransactionResponse,
    summary="Get one of my transactions",
)
async def get_transaction(
    transaction_id: uuid.UUID,
    user: User = Depends(get_current_merchant),
    db: AsyncSession = Depends(get_db),
):
    return await transaction_service.get_transaction(db, user.id, transaction_id)
