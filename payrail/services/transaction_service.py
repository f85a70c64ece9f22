"""
Transaction service — read access to payment and withdrawal history.

Member functions are scoped by the authenticated user's id. A transaction
belonging to another merchant is reported as not found, so ids cannot be
enumerated.

Admin read-only functions:
  Functions prefixed with `admin_` provide read access to all transactions
  without ownership scoping. These are called from admin-only endpoints.

Writes do not happen here: creation lives in payment_service /
withdrawal_service and every later change goes through
reconciliation_service.
"""

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payrail.exceptions import TransactionNotFoundError
from payrail.models.transaction import Transaction


async def get_transactions(
    db: AsyncSession,
    user_id: uuid.UUID,
    transaction_type: str | None = None,
    status: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Transaction]:
    query = (
        select(Transaction)
        .where(Transaction.user_id == user_id)
        .order_by(Transaction.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    if transaction_type:
        query = query.where(Transaction.type == transaction_type)
    if status:
        query = query.where(Transaction.status == status)
    result = await db.execute(query)
    return list(result.scalars().all())


async def get_transaction(
    db: AsyncSession,
    user_id: uuid.UUID,
    transaction_id: uuid.UUID,
) -> Transaction:
    result = await db.execute(
        select(Transaction).where(
            Transaction.id == transaction_id,
            Transaction.user_id == user_id,
        )
    )
    transaction = result.scalar_one_or_none()
    if transaction is None:
        raise TransactionNotFoundError(transaction_id)
    return transaction


async def admin_get_all_transactions(
    db: AsyncSession,
    status: str | None = None,
    provider: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[Transaction]:
    query = (
        select(Transaction)
        .order_by(Transaction.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    if status:
        query = query.where(Transaction.status == status)
    if provider:
        query = query.where(Transaction.provider == provider)
    result = await db.execute(query)
    return list(result.scalars().all())


async def admin_get_transaction(db: AsyncSession, transaction_id: uuid.UUID) -> Transaction:
    result = await db.execute(select(Transaction).where(Transaction.id == transaction_id))
    transaction = result.scalar_one_or_none()
    if transaction is None:
        raise TransactionNotFoundError(transaction_id)
    return transaction
