"""
Provider registry: the static capability table.

Answers "which payment methods are available in this country?" and "what does
provider X need?" with no I/O. Everything the routing engine, the signature
verifier and the adapters need to know about a provider lives in one
ProviderCapability record here:

  - flows it serves (collection = merchant receives money, disbursement =
    merchant withdraws money)
  - payment methods and the country allowlist
  - a required settlement currency, if the provider only accepts one
  - the minor-unit multiplier used when talking to the provider API
  - how its inbound notifications are authenticated
  - an optional config country override (Pesepay is an aggregator: every
    Pesepay transaction uses the ZW platform credentials)

Country codes are ISO 3166 alpha-2 and compared upper-cased. Unknown
countries are simply unsupported; lookups never raise.
"""

import enum
from dataclasses import dataclass, field


class Provider(str, enum.Enum):
    PESAPAL = "pesapal"
    PAYSTACK = "paystack"
    PESEPAY = "pesepay"
    MTN_MOMO = "mtn_momo"
    PAYMENTOLOGY = "paymentology"
    # Sentinel: no automated rail, merchant must contact support
    MANUAL = "manual"


class PaymentMethod(str, enum.Enum):
    CARD = "card"
    MOBILE_MONEY = "mobile_money"
    BANK_TRANSFER = "bank_transfer"


class Flow(str, enum.Enum):
    PAYMENT = "payment"
    WITHDRAWAL = "withdrawal"


class WithdrawalAccountType(str, enum.Enum):
    MOBILE = "mobile"
    BANK = "bank"


@dataclass(frozen=True)
class SignatureScheme:
    """
    How a provider authenticates notifications it sends us.

    kind "shared_secret": the header value must equal the configured secret.
    kind "hmac": the header carries hex(HMAC(secret, raw_body)) with `digest`.
    """
    kind: str
    header: str
    digest: str | None = None


@dataclass(frozen=True)
class ProviderCapability:
    provider: Provider
    display_name: str
    flows: frozenset[Flow]
    methods: frozenset[PaymentMethod]
    countries: frozenset[str]
    signature: SignatureScheme
    settlement_currency: str | None = None
    minor_unit_multiplier: int = 1
    config_country: str | None = None
    # Orders must name a registered IPN (ProviderConfig.ipn_id)
    requires_ipn: bool = False
    withdrawal_account_types: frozenset[WithdrawalAccountType] = field(
        default_factory=frozenset
    )


PESAPAL_COUNTRIES = frozenset({"KE", "UG", "TZ", "MW", "RW", "ZM", "ZW"})
PESEPAY_COUNTRIES = frozenset({"ZW"})
PAYSTACK_COUNTRIES = frozenset({"NG"})
MTN_MOMO_COUNTRIES = frozenset(
    {"BJ", "CG", "CM", "GH", "GN", "GW", "LR", "RW", "SZ", "ZA", "ZM"}
)
PAYMENTOLOGY_COUNTRIES = frozenset(
    {
        # Europe / North America
        "US", "GB", "DE", "FR", "IT", "ES", "NL", "BE", "AT", "PT", "IE",
        # Africa
        "ZA", "NG", "GH", "KE", "UG", "TZ", "RW", "ZM", "MW", "BW", "ZW",
    }
)


CAPABILITIES: dict[Provider, ProviderCapability] = {
    Provider.PESAPAL: ProviderCapability(
        provider=Provider.PESAPAL,
        display_name="Pesapal",
        flows=frozenset({Flow.PAYMENT}),
        methods=frozenset(
            {PaymentMethod.CARD, PaymentMethod.MOBILE_MONEY, PaymentMethod.BANK_TRANSFER}
        ),
        countries=PESAPAL_COUNTRIES,
        signature=SignatureScheme(kind="shared_secret", header="x-webhook-secret"),
        requires_ipn=True,
    ),
    Provider.PAYSTACK: ProviderCapability(
        provider=Provider.PAYSTACK,
        display_name="Paystack",
        flows=frozenset({Flow.PAYMENT}),
        methods=frozenset({PaymentMethod.CARD}),
        countries=PAYSTACK_COUNTRIES,
        signature=SignatureScheme(
            kind="hmac", header="x-paystack-signature", digest="sha512"
        ),
        settlement_currency="NGN",
        # Amounts are sent in kobo
        minor_unit_multiplier=100,
    ),
    Provider.PESEPAY: ProviderCapability(
        provider=Provider.PESEPAY,
        display_name="Pesepay",
        flows=frozenset({Flow.PAYMENT}),
        methods=frozenset({PaymentMethod.MOBILE_MONEY, PaymentMethod.CARD}),
        countries=PESEPAY_COUNTRIES,
        signature=SignatureScheme(kind="shared_secret", header="x-webhook-secret"),
        config_country="ZW",
    ),
    Provider.MTN_MOMO: ProviderCapability(
        provider=Provider.MTN_MOMO,
        display_name="MTN Mobile Money",
        flows=frozenset({Flow.WITHDRAWAL}),
        methods=frozenset({PaymentMethod.MOBILE_MONEY}),
        countries=MTN_MOMO_COUNTRIES,
        signature=SignatureScheme(kind="shared_secret", header="x-webhook-secret"),
        withdrawal_account_types=frozenset({WithdrawalAccountType.MOBILE}),
    ),
    Provider.PAYMENTOLOGY: ProviderCapability(
        provider=Provider.PAYMENTOLOGY,
        display_name="Virtual Card",
        flows=frozenset({Flow.WITHDRAWAL}),
        methods=frozenset({PaymentMethod.CARD}),
        countries=PAYMENTOLOGY_COUNTRIES,
        # TODO: confirm header name and digest with Paymentology once the
        # production notification contract is signed off
        signature=SignatureScheme(
            kind="hmac", header="x-paymentology-signature", digest="sha256"
        ),
        withdrawal_account_types=frozenset({WithdrawalAccountType.BANK}),
    ),
}


def normalize_country(country_code: str | None) -> str:
    return (country_code or "").strip().upper()


def get_capability(provider: Provider | str) -> ProviderCapability | None:
    try:
        provider = Provider(provider)
    except ValueError:
        return None
    return CAPABILITIES.get(provider)


def provider_supports(
    provider: Provider,
    flow: Flow,
    method: PaymentMethod,
    country_code: str,
) -> bool:
    capability = CAPABILITIES.get(provider)
    if capability is None:
        return False
    return (
        flow in capability.flows
        and method in capability.methods
        and normalize_country(country_code) in capability.countries
    )


def list_methods_for(country_code: str | None) -> set[PaymentMethod]:
    """
    Payment methods a payer can use to pay a merchant in `country_code`.

    Only collection providers count. Unknown or empty country → empty set.
    """
    country = normalize_country(country_code)
    methods: set[PaymentMethod] = set()
    for capability in CAPABILITIES.values():
        if Flow.PAYMENT in capability.flows and country in capability.countries:
            methods |= capability.methods
    return methods


def method_supported(method: PaymentMethod | str, country_code: str | None) -> bool:
    try:
        method = PaymentMethod(method)
    except ValueError:
        return False
    return method in list_methods_for(country_code)


def webhook_slug(provider: Provider | str) -> str:
    """Path segment of the provider's notification endpoint."""
    return Provider(provider).value.replace("_", "-")


def config_country_for(provider: Provider, country_code: str) -> str:
    """Country whose ProviderConfig row holds the credentials for this rail."""
    capability = CAPABILITIES.get(provider)
    if capability is not None and capability.config_country:
        return capability.config_country
    return normalize_country(country_code)
