"""
Transaction reconciliation — the state machine that owns status transitions.

THIS IS THE MOST CRITICAL FILE IN THE PROJECT. Every path that learns a
provider outcome (webhook, IPN, manual status poll, synchronous initiation
result) ends in apply_status(), and nothing else writes Transaction.status or
MerchantProfile.balance after a transaction has been created.

States:
    pending ──► completed
       └──────► failed

  completed and failed are terminal. A notification for a terminal
  transaction is a no-op (outcome "duplicate"), even if it reports a
  different status.

Balance effects (applied exactly once, on the transition itself):
  - payment   → completed : merchant balance += amount
  - withdrawal → failed    : merchant balance += amount (refund of the debit
                             taken at initiation)

Concurrency:
  There are no in-process locks. Two deliveries of the same notification can
  be processed at the same time in different requests, each with its own
  session. The transition is a single conditional UPDATE

      UPDATE transactions SET status = :new ... WHERE id = :id AND status = 'pending'

  and only the request whose UPDATE matched a row applies the balance change,
  as an in-SQL increment inside the same database transaction. A request
  whose UPDATE matched nothing lost the race and reports "duplicate".

Metadata:
  Provider diagnostics are merged into Transaction.metadata, never replacing
  keys the initiation step stored (redirect URLs, payer details, fee split).

Merchant events:
  apply_status() only records the event owed to the merchant on the result.
  Callers hand the result to publish_transition(), which commits first and
  then delivers, so nothing outbound happens while the row is locked.
"""

import enum
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

import httpx
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from payrail.exceptions import AccessDeniedError, InvalidInputError, TransactionNotFoundError
from payrail.logging_config import get_logger
from payrail.models.merchant_profile import MerchantProfile
from payrail.models.transaction import Transaction, TransactionStatus, TransactionType
from payrail.models.user import User
from payrail.providers.base import ProviderCredentials
from payrail.providers.factory import get_adapter
from payrail.providers.registry import Provider, get_capability
from payrail.services import notification_service, provider_config_service


logger = get_logger(__name__)


class ReconciliationOutcome(str, enum.Enum):
    APPLIED = "applied"        # pending → terminal happened in this call
    UNCHANGED = "unchanged"    # provider still reports pending
    DUPLICATE = "duplicate"    # already terminal, or lost the race


@dataclass
class ReconciliationResult:
    transaction: Transaction
    outcome: ReconciliationOutcome
    previous_status: str
    balance_delta: Decimal = Decimal("0")
    event: notification_service.MerchantEvent | None = None

    def summary(self) -> dict[str, Any]:
        return {
            "transaction_id": str(self.transaction.id),
            "status": self.transaction.status,
            "outcome": self.outcome.value,
        }


def _clean(diagnostics: dict[str, Any] | None) -> dict[str, Any]:
    return {key: value for key, value in (diagnostics or {}).items() if value is not None}


def _balance_delta(transaction: Transaction, status: TransactionStatus) -> Decimal:
    if transaction.type == TransactionType.PAYMENT.value and status == TransactionStatus.COMPLETED:
        return transaction.amount
    if transaction.type == TransactionType.WITHDRAWAL.value and status == TransactionStatus.FAILED:
        return transaction.amount
    return Decimal("0")


async def apply_status(
    db: AsyncSession,
    transaction: Transaction,
    status: TransactionStatus | str,
    diagnostics: dict[str, Any] | None = None,
) -> ReconciliationResult:
    """
    Apply a normalized provider status to a transaction already loaded.

    Returns the reconciliation outcome together with the refreshed
    transaction. Never raises for duplicates.
    """
    status = TransactionStatus(status)
    previous_status = transaction.status

    if transaction.is_terminal:
        logger.info(
            "reconciliation_duplicate",
            transaction_id=str(transaction.id),
            current_status=transaction.status,
            reported_status=status.value,
        )
        return ReconciliationResult(transaction, ReconciliationOutcome.DUPLICATE, previous_status)

    merged = {**(transaction.metadata_ or {}), **_clean(diagnostics)}
    now = datetime.now(timezone.utc)
    values: dict[Any, Any] = {
        Transaction.metadata_: merged,
        Transaction.updated_at: now,
    }
    if status != TransactionStatus.PENDING:
        values[Transaction.status] = status.value
    if status == TransactionStatus.COMPLETED:
        values[Transaction.completed_at] = now

    result = await db.execute(
        update(Transaction)
        .where(
            Transaction.id == transaction.id,
            Transaction.status == TransactionStatus.PENDING.value,
        )
        .values(values)
        .execution_options(synchronize_session=False)
    )

    if result.rowcount == 0:
        # Another request completed the transition between our read and write
        await db.refresh(transaction)
        logger.info(
            "reconciliation_lost_race",
            transaction_id=str(transaction.id),
            current_status=transaction.status,
            reported_status=status.value,
        )
        return ReconciliationResult(transaction, ReconciliationOutcome.DUPLICATE, previous_status)

    if status == TransactionStatus.PENDING:
        await db.refresh(transaction)
        return ReconciliationResult(transaction, ReconciliationOutcome.UNCHANGED, previous_status)

    delta = _balance_delta(transaction, status)
    if delta:
        await db.execute(
            update(MerchantProfile)
            .where(MerchantProfile.user_id == transaction.user_id)
            .values({MerchantProfile.balance: MerchantProfile.balance + delta})
            .execution_options(synchronize_session=False)
        )

    await db.refresh(transaction)
    logger.info(
        "transaction_transitioned",
        transaction_id=str(transaction.id),
        provider=transaction.provider,
        type=transaction.type,
        from_status=previous_status,
        to_status=transaction.status,
        balance_delta=str(delta),
    )

    return ReconciliationResult(
        transaction,
        ReconciliationOutcome.APPLIED,
        previous_status,
        delta,
        event=notification_service.event_for(transaction),
    )


async def publish_transition(
    db: AsyncSession,
    http_client: httpx.AsyncClient,
    result: ReconciliationResult,
) -> bool:
    """
    Commit an applied transition, then deliver its merchant event.

    Returns True when the merchant acknowledged the event.
    """
    if result.event is None:
        return False
    await db.commit()
    return await notification_service.deliver(http_client, result.event)


async def get_transaction_by_reference(
    db: AsyncSession,
    provider: Provider | str,
    reference: str,
) -> Transaction:
    """
    Raises:
        TransactionNotFoundError: Unknown (provider, reference). Nothing is created.
    """
    result = await db.execute(
        select(Transaction).where(
            Transaction.provider == Provider(provider).value,
            Transaction.reference == reference,
        )
    )
    transaction = result.scalar_one_or_none()
    if transaction is None:
        logger.warning(
            "reconciliation_unknown_reference",
            provider=Provider(provider).value,
            reference=reference,
        )
        raise TransactionNotFoundError(reference)
    return transaction


async def apply_notification(
    db: AsyncSession,
    provider: Provider | str,
    reference: str,
    status: TransactionStatus | str,
    diagnostics: dict[str, Any] | None = None,
) -> ReconciliationResult:
    """Look up a transaction by provider reference and apply `status` to it."""
    transaction = await get_transaction_by_reference(db, provider, reference)
    return await apply_status(db, transaction, status, diagnostics)


async def credentials_for_transaction(
    db: AsyncSession,
    transaction: Transaction,
) -> ProviderCredentials:
    """Credentials for the config that initiated `transaction`."""
    country = (transaction.metadata_ or {}).get("provider_config_country")
    if not country:
        result = await db.execute(
            select(MerchantProfile.country).where(MerchantProfile.user_id == transaction.user_id)
        )
        country = result.scalar_one_or_none() or ""
    return await provider_config_service.get_credentials(db, transaction.provider, country)


async def reconcile_notification(
    db: AsyncSession,
    http_client: httpx.AsyncClient,
    provider: Provider | str,
    payload: dict[str, Any],
) -> ReconciliationResult:
    """
    Handle an authenticated webhook body end to end.

    Providers whose notifications carry a final status are applied directly.
    For the others (Pesapal, Pesepay) the status is fetched from the provider
    first, unless the transaction is already terminal.
    """
    provider = Provider(provider)
    adapter = get_adapter(provider, http_client)

    credentials = None
    capability = get_capability(provider)
    if capability is not None and capability.config_country:
        credentials = await provider_config_service.get_credentials(
            db, provider, capability.config_country
        )

    notification = adapter.parse_notification(payload, credentials)
    logger.info(
        "notification_received",
        provider=provider.value,
        reference=notification.reference,
        raw_status=notification.raw_status,
    )

    if notification.raw_status is not None:
        return await apply_notification(
            db,
            provider,
            notification.reference,
            adapter.normalize_status(notification.raw_status),
            notification.diagnostics,
        )

    transaction = await get_transaction_by_reference(db, provider, notification.reference)
    if transaction.is_terminal:
        return await apply_status(db, transaction, transaction.status, notification.diagnostics)

    if credentials is None:
        credentials = await credentials_for_transaction(db, transaction)
    status_result = await adapter.fetch_status(notification.reference, credentials)
    return await apply_status(
        db,
        transaction,
        status_result.status,
        {**notification.diagnostics, **status_result.diagnostics},
    )


async def check_transaction_status(
    db: AsyncSession,
    http_client: httpx.AsyncClient,
    transaction_id: uuid.UUID,
    user: User,
) -> ReconciliationResult:
    """
    Manual "check status now": poll the provider and reconcile.

    Raises:
        TransactionNotFoundError: Unknown transaction id.
        AccessDeniedError: The transaction belongs to another merchant.
        InvalidInputError: The provider never assigned a reference.
        ProviderUnavailableError: The provider status call failed.
    """
    result = await db.execute(select(Transaction).where(Transaction.id == transaction_id))
    transaction = result.scalar_one_or_none()
    if transaction is None:
        raise TransactionNotFoundError(transaction_id)
    if transaction.user_id != user.id:
        raise AccessDeniedError("You do not have access to this transaction")
    if not transaction.reference:
        raise InvalidInputError("Transaction has no provider reference to check")

    if transaction.is_terminal:
        return await apply_status(db, transaction, transaction.status)

    adapter = get_adapter(transaction.provider, http_client)
    credentials = await credentials_for_transaction(db, transaction)
    status_result = await adapter.fetch_status(transaction.reference, credentials)
    logger.info(
        "status_polled",
        transaction_id=str(transaction.id),
        provider=transaction.provider,
        raw_status=status_result.raw_status,
    )
    return await apply_status(db, transaction, status_result.status, status_result.diagnostics)
