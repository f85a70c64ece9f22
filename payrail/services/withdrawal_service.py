"""
Withdrawal service — pays merchant balance out through the routed rail.

Routing (see providers.routing):
  mobile wallet in an MTN MoMo country   → MTN MoMo transfer
  bank account in a virtual-card country → Paymentology virtual card
  anything else                          → manual (rejected, contact support)

Fees depend on the merchant plan:
  business 1%, professional 2%, everyone else 5%

The transaction amount is the total taken from the balance (amount + fee);
the provider is asked to pay out `amount`.

Balance handling:
  The debit is a conditional UPDATE (`balance >= total`) so two concurrent
  withdrawals can never overdraw the balance. If the provider call fails, or
  the provider later reports failure, the reconciliation service moves the
  transaction to failed and refunds the total exactly once.

  A payout call that timed out after it may have reached the provider is
  not a failure: the transaction stays pending under the reference we sent,
  and the provider callback or a status check decides whether to refund.
"""

from decimal import ROUND_HALF_UP, Decimal

import httpx
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from payrail.config import settings
from payrail.exceptions import InsufficientFundsError, InvalidInputError, ProviderUnavailableError
from payrail.logging_config import get_logger
from payrail.models.merchant_profile import MerchantPlan, MerchantProfile
from payrail.models.transaction import Transaction, TransactionStatus, TransactionType
from payrail.models.user import User
from payrail.providers.base import InitiationIntent, InitiationResult
from payrail.providers.factory import get_adapter
from payrail.providers.registry import Flow, PaymentMethod, Provider, WithdrawalAccountType, webhook_slug
from payrail.providers.routing import (
    RoutingIntent,
    get_withdrawal_operation,
    is_instant_withdrawal,
    processing_time,
    provider_display_name,
    select_provider,
)
from payrail.services import merchant_service, provider_config_service, reconciliation_service


logger = get_logger(__name__)

FEE_RATES = {
    MerchantPlan.BUSINESS.value: Decimal("0.01"),
    MerchantPlan.PROFESSIONAL.value: Decimal("0.02"),
}
DEFAULT_FEE_RATE = Decimal("0.05")

WITHDRAWAL_METHODS = {
    Provider.MTN_MOMO: PaymentMethod.MOBILE_MONEY,
    Provider.PAYMENTOLOGY: PaymentMethod.CARD,
}


def fee_rate_for(plan: str | None) -> Decimal:
    return FEE_RATES.get(plan or "", DEFAULT_FEE_RATE)


def calculate_fee(amount: Decimal, plan: str | None) -> Decimal:
    return (amount * fee_rate_for(plan)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _destination(profile: MerchantProfile) -> dict:
    if profile.withdrawal_account_type == WithdrawalAccountType.MOBILE.value:
        return {"mobile_provider": profile.mobile_provider, "mobile_number": profile.mobile_number}
    return {
        "bank_name": profile.bank_name,
        "bank_account_number": profile.bank_account_number,
        "bank_account_name": profile.bank_account_name,
    }


def _masked(value: str | None) -> str | None:
    if not value:
        return value
    return f"***{value[-4:]}"


def describe_route(profile: MerchantProfile) -> dict:
    """Routing preview for the withdrawal screen. Never raises."""
    account_type = profile.withdrawal_account_type
    provider = Provider.MANUAL
    if account_type:
        provider = select_provider(
            RoutingIntent(
                flow=Flow.WITHDRAWAL,
                country_code=profile.country,
                currency=profile.currency,
                account_type=WithdrawalAccountType(account_type),
            )
        )
    return {
        "provider": provider.value,
        "display_name": provider_display_name(provider),
        "processing_time": processing_time(provider, account_type),
        "is_instant": is_instant_withdrawal(provider, account_type),
        "supported": provider != Provider.MANUAL,
        "account_type": account_type,
        "fee_rate": str(fee_rate_for(profile.plan)),
    }


async def create_withdrawal(
    db: AsyncSession,
    http_client: httpx.AsyncClient,
    user: User,
    amount: Decimal,
    description: str | None = None,
) -> tuple[Transaction, InitiationResult]:
    """
    Raises:
        InvalidInputError: No withdrawal account is configured.
        ManualWithdrawalError: The destination has no automated rail.
        ProviderConfigNotFoundError: The rail has no active credentials.
        InsufficientFundsError: amount + fee exceeds the balance.
        ProviderUnavailableError: The provider rejected the payout, or could
            not be reached before it was sent (the debit has been refunded).
    """
    profile = await merchant_service.get_profile(db, user.id)
    if not profile.withdrawal_account_type:
        raise InvalidInputError("Set up a withdrawal account before withdrawing")

    account_type = WithdrawalAccountType(profile.withdrawal_account_type)
    provider = select_provider(
        RoutingIntent(
            flow=Flow.WITHDRAWAL,
            country_code=profile.country,
            currency=profile.currency,
            account_type=account_type,
            amount=amount,
        )
    )
    operation = get_withdrawal_operation(provider)
    credentials = await provider_config_service.get_credentials(db, provider, profile.country)
    adapter = get_adapter(provider, http_client)
    adapter.ensure_ready(credentials)

    fee = calculate_fee(amount, profile.plan)
    total = amount + fee

    debit = await db.execute(
        update(MerchantProfile)
        .where(MerchantProfile.id == profile.id, MerchantProfile.balance >= total)
        .values({MerchantProfile.balance: MerchantProfile.balance - total})
        .execution_options(synchronize_session=False)
    )
    if debit.rowcount == 0:
        await db.refresh(profile)
        raise InsufficientFundsError(requested=total, available=profile.balance)

    destination = _destination(profile)
    transaction = Transaction(
        user_id=user.id,
        type=TransactionType.WITHDRAWAL.value,
        amount=total,
        currency=profile.currency,
        status=TransactionStatus.PENDING.value,
        payment_method=WITHDRAWAL_METHODS[provider].value,
        provider=provider.value,
        description=description or "Withdrawal",
        metadata_={
            "withdrawal_amount": str(amount),
            "fee": str(fee),
            "fee_rate": str(fee_rate_for(profile.plan)),
            "plan": profile.plan,
            "operation": operation,
            "account_type": account_type.value,
            "destination": {
                key: _masked(value) if key in ("mobile_number", "bank_account_number") else value
                for key, value in destination.items()
            },
            "provider_config_country": credentials.country_code,
        },
    )
    db.add(transaction)
    await db.flush()

    # Stored before the call so a callback can find the transaction even if
    # the provider's response never reaches us
    reference = adapter.assign_reference(transaction.id)
    if reference:
        transaction.reference = reference
        await db.flush()

    intent = InitiationIntent(
        transaction_id=transaction.id,
        flow=Flow.WITHDRAWAL,
        amount=amount,
        currency=profile.currency,
        country_code=profile.country,
        description=transaction.description,
        customer_name=profile.bank_account_name or profile.full_name,
        customer_email=profile.email,
        customer_phone=profile.phone,
        notification_url=f"{settings.PUBLIC_API_URL}/webhooks/{webhook_slug(provider)}",
        destination=destination,
        reference=reference,
    )

    try:
        initiation = await adapter.initiate(intent, credentials)
    except ProviderUnavailableError as exc:
        diagnostics = {
            "initiation_error": exc.provider_detail,
            "initiation_upstream_status": exc.upstream_status,
        }
        if exc.outcome_unknown and transaction.reference:
            # The payout may be under way; the callback or a status check settles it
            await reconciliation_service.apply_status(
                db, transaction, TransactionStatus.PENDING, diagnostics
            )
            logger.warning(
                "withdrawal_outcome_unknown",
                transaction_id=str(transaction.id),
                provider=provider.value,
                reference=transaction.reference,
            )
            return transaction, InitiationResult(
                external_reference=transaction.reference,
                instructions=(
                    "The provider has not confirmed this withdrawal yet. "
                    "Its status will update once the provider reports back."
                ),
            )

        await reconciliation_service.apply_status(
            db, transaction, TransactionStatus.FAILED, diagnostics
        )
        logger.warning(
            "withdrawal_initiation_failed",
            transaction_id=str(transaction.id),
            provider=provider.value,
            upstream_status=exc.upstream_status,
        )
        raise

    transaction.reference = initiation.external_reference
    transaction.metadata_ = {
        **transaction.metadata_,
        **{key: value for key, value in initiation.diagnostics.items() if value is not None},
    }
    await db.flush()

    if initiation.status != TransactionStatus.PENDING:
        # Synchronous rails (virtual card issuance) settle immediately
        result = await reconciliation_service.apply_status(db, transaction, initiation.status)
        await reconciliation_service.publish_transition(db, http_client, result)

    logger.info(
        "withdrawal_initiated",
        transaction_id=str(transaction.id),
        provider=provider.value,
        amount=str(amount),
        fee=str(fee),
        status=transaction.status,
    )
    return transaction, initiation
