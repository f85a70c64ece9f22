"""
Routing engine: picks the provider for a payment or withdrawal.

Routing is a pure function of the intent. It never performs I/O, never
retries, and returns the same provider for the same input every time.

Payments walk a preference list per method and pick the first provider whose
capability covers (method, country). If that provider only settles in one
currency and the intent is in another, routing fails with
CurrencyNotSupportedError rather than converting silently.

Withdrawals follow a fixed decision table:
  1. mobile account in an MTN MoMo country      → mtn_momo
  2. bank account in a virtual-card country     → paymentology
  3. anything else                              → manual

"manual" is a valid routing answer (it drives the UI message), but there is
no operation behind it: get_withdrawal_operation() raises for it.
"""

from dataclasses import dataclass
from decimal import Decimal

from payrail.exceptions import (
    CurrencyNotSupportedError,
    ManualWithdrawalError,
    RoutingUnsupportedError,
)
from payrail.providers.registry import (
    CAPABILITIES,
    MTN_MOMO_COUNTRIES,
    PAYMENTOLOGY_COUNTRIES,
    Flow,
    PaymentMethod,
    Provider,
    WithdrawalAccountType,
    normalize_country,
    provider_supports,
)


PAYMENT_PREFERENCE: dict[PaymentMethod, tuple[Provider, ...]] = {
    PaymentMethod.CARD: (Provider.PAYSTACK, Provider.PESAPAL),
    PaymentMethod.MOBILE_MONEY: (Provider.PESEPAY, Provider.PESAPAL),
    PaymentMethod.BANK_TRANSFER: (Provider.PESAPAL,),
}

WITHDRAWAL_OPERATIONS: dict[Provider, str] = {
    Provider.MTN_MOMO: "mtn-momo-withdraw",
    Provider.PAYMENTOLOGY: "paymentology-issue-card",
}


@dataclass(frozen=True)
class RoutingIntent:
    """
    What the caller wants to do.

    For payments `payment_method` is required, for withdrawals
    `account_type` is required.
    """
    flow: Flow
    country_code: str
    currency: str
    payment_method: PaymentMethod | None = None
    account_type: WithdrawalAccountType | None = None
    amount: Decimal | None = None


def select_payment_provider(
    payment_method: PaymentMethod | str,
    country_code: str,
    currency: str,
) -> Provider:
    try:
        method = PaymentMethod(payment_method)
    except ValueError:
        raise RoutingUnsupportedError(f"Unknown payment method {payment_method}")

    country = normalize_country(country_code)
    for provider in PAYMENT_PREFERENCE.get(method, ()):
        if not provider_supports(provider, Flow.PAYMENT, method, country):
            continue
        required = CAPABILITIES[provider].settlement_currency
        if required and (currency or "").upper() != required:
            raise CurrencyNotSupportedError(provider.value, currency, required)
        return provider

    raise RoutingUnsupportedError(
        f"{method.value} payments are not supported in {country or 'unknown country'}"
    )


def select_withdrawal_provider(
    country_code: str | None,
    account_type: WithdrawalAccountType | str | None,
) -> Provider:
    country = normalize_country(country_code)
    if account_type == WithdrawalAccountType.MOBILE and country in MTN_MOMO_COUNTRIES:
        return Provider.MTN_MOMO
    if account_type == WithdrawalAccountType.BANK and country in PAYMENTOLOGY_COUNTRIES:
        return Provider.PAYMENTOLOGY
    return Provider.MANUAL


def select_provider(intent: RoutingIntent) -> Provider:
    """
    Pick the provider for an intent.

    Raises:
        RoutingUnsupportedError: No provider covers a payment intent, or a
            withdrawal intent lacks an account type.
        CurrencyNotSupportedError: The chosen payment provider settles in a
            different currency.
    """
    if intent.flow == Flow.PAYMENT:
        if intent.payment_method is None:
            raise RoutingUnsupportedError("A payment method is required")
        return select_payment_provider(
            intent.payment_method, intent.country_code, intent.currency
        )

    if intent.account_type is None:
        raise RoutingUnsupportedError("A withdrawal account type is required")
    return select_withdrawal_provider(intent.country_code, intent.account_type)


def get_withdrawal_operation(provider: Provider | str) -> str:
    """Name of the operation that executes a withdrawal on `provider`."""
    try:
        provider = Provider(provider)
    except ValueError:
        raise RoutingUnsupportedError(f"Unknown withdrawal provider {provider}")
    if provider == Provider.MANUAL:
        raise ManualWithdrawalError()
    operation = WITHDRAWAL_OPERATIONS.get(provider)
    if operation is None:
        raise RoutingUnsupportedError(f"{provider.value} does not process withdrawals")
    return operation


# ---------------------------------------------------------------------------
# Display helpers for the withdrawal screen
# ---------------------------------------------------------------------------

def provider_display_name(provider: Provider | str) -> str:
    if provider == Provider.MANUAL:
        return "Manual Processing"
    capability = CAPABILITIES.get(Provider(provider))
    return capability.display_name if capability else str(provider)


def is_instant_withdrawal(
    provider: Provider | str,
    account_type: WithdrawalAccountType | str | None,
) -> bool:
    return provider == Provider.MTN_MOMO and account_type == WithdrawalAccountType.MOBILE


def processing_time(
    provider: Provider | str,
    account_type: WithdrawalAccountType | str | None,
) -> str:
    if is_instant_withdrawal(provider, account_type):
        return "Instant"
    if provider == Provider.PAYMENTOLOGY:
        return "Instant virtual card issuance"
    if account_type == WithdrawalAccountType.MOBILE:
        return "1-2 business days"
    return "1-3 business days"
