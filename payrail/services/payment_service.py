"""
Payment service — starts a collection with the routed provider.

Flow:
  1. Resolve the merchant profile; the payment currency must be the
     merchant's balance currency (no silent conversion)
  2. Route (method, merchant country, currency) to a provider
  3. Load that provider's credentials for the country, failing closed
  4. Persist a pending transaction
  5. Call the provider; store its reference and redirect URL

If the provider call fails, the transaction is moved to failed through the
reconciliation service (so it stays in history) and ProviderUnavailableError
propagates. get_db commits on domain errors, so the failed row persists.
"""

from decimal import Decimal

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from payrail.config import settings
from payrail.exceptions import InvalidInputError, ProviderUnavailableError
from payrail.logging_config import get_logger
from payrail.models.transaction import Transaction, TransactionStatus, TransactionType
from payrail.models.user import User
from payrail.providers.base import InitiationIntent, InitiationResult
from payrail.providers.factory import get_adapter
from payrail.providers.registry import Flow, PaymentMethod, webhook_slug
from payrail.providers.routing import RoutingIntent, select_provider
from payrail.services import merchant_service, provider_config_service, reconciliation_service


logger = get_logger(__name__)


async def create_payment(
    db: AsyncSession,
    http_client: httpx.AsyncClient,
    user: User,
    amount: Decimal,
    payment_method: PaymentMethod,
    customer_name: str,
    customer_email: str,
    currency: str | None = None,
    customer_phone: str | None = None,
    description: str | None = None,
    webhook_url: str | None = None,
    success_url: str | None = None,
) -> tuple[Transaction, InitiationResult]:
    """
    Returns:
        The transaction and the provider's initiation result.

    Raises:
        InvalidInputError: Currency differs from the merchant currency.
        RoutingUnsupportedError: No provider serves this method/country.
        ProviderConfigNotFoundError: The rail has no active credentials, or
            no registered IPN where it needs one.
        ProviderUnavailableError: The provider rejected or did not answer.
    """
    profile = await merchant_service.get_profile(db, user.id)
    currency = (currency or profile.currency).upper()
    if currency != profile.currency:
        raise InvalidInputError(
            f"Payments must be made in the merchant currency {profile.currency}"
        )

    provider = select_provider(
        RoutingIntent(
            flow=Flow.PAYMENT,
            country_code=profile.country,
            currency=currency,
            payment_method=payment_method,
            amount=amount,
        )
    )
    credentials = await provider_config_service.get_credentials(db, provider, profile.country)
    adapter = get_adapter(provider, http_client)
    adapter.ensure_ready(credentials)

    transaction = Transaction(
        user_id=user.id,
        type=TransactionType.PAYMENT.value,
        amount=amount,
        currency=currency,
        status=TransactionStatus.PENDING.value,
        payment_method=PaymentMethod(payment_method).value,
        provider=provider.value,
        description=description,
        metadata_={
            "payer_name": customer_name,
            "payer_email": customer_email,
            "webhook_url": webhook_url,
            "success_url": success_url,
            "provider_config_country": credentials.country_code,
        },
    )
    db.add(transaction)
    await db.flush()

    intent = InitiationIntent(
        transaction_id=transaction.id,
        flow=Flow.PAYMENT,
        amount=amount,
        currency=currency,
        country_code=profile.country,
        description=description or f"Payment to {profile.full_name}",
        payment_method=PaymentMethod(payment_method),
        customer_name=customer_name,
        customer_email=customer_email,
        customer_phone=customer_phone,
        callback_url=f"{settings.PUBLIC_APP_URL}/payment-callback?transaction_id={transaction.id}",
        cancel_url=f"{settings.PUBLIC_APP_URL}/payment-cancel?transaction_id={transaction.id}",
        notification_url=f"{settings.PUBLIC_API_URL}/webhooks/{webhook_slug(provider)}",
    )

    try:
        initiation = await adapter.initiate(intent, credentials)
    except ProviderUnavailableError as exc:
        await reconciliation_service.apply_status(
            db,
            transaction,
            TransactionStatus.FAILED,
            {
                "initiation_error": exc.provider_detail,
                "initiation_upstream_status": exc.upstream_status,
            },
        )
        logger.warning(
            "payment_initiation_failed",
            transaction_id=str(transaction.id),
            provider=provider.value,
            upstream_status=exc.upstream_status,
        )
        raise

    transaction.reference = initiation.external_reference
    transaction.metadata_ = {
        **transaction.metadata_,
        **{key: value for key, value in initiation.diagnostics.items() if value is not None},
        "redirect_url": initiation.redirect_url,
    }
    await db.flush()

    if initiation.status != TransactionStatus.PENDING:
        result = await reconciliation_service.apply_status(db, transaction, initiation.status)
        await reconciliation_service.publish_transition(db, http_client, result)

    logger.info(
        "payment_initiated",
        transaction_id=str(transaction.id),
        provider=provider.value,
        payment_method=transaction.payment_method,
        amount=str(amount),
        currency=currency,
    )
    return transaction, initiation
