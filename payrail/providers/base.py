"""
Provider adapter interface and shared HTTP plumbing.

Every external provider is wrapped in a ProviderAdapter subclass with the
same five operations:

  initiate(intent, credentials)          → InitiationResult
  fetch_status(reference, credentials)   → StatusResult
  verify(raw_body, headers, secret)      → bool
  parse_notification(payload, creds)     → ProviderNotification
  normalize_status(raw)                  → TransactionStatus

Rails that push notifications to a registered endpoint (Pesapal, Pesepay)
also implement register_ipn(url, credentials) → IpnRegistration.

Provider differences stay inside the subclasses. Callers pick an adapter
with payrail.providers.factory.get_adapter() from the routing output and never
branch on provider names themselves.

HTTP:
  Adapters never own a client. The caller passes in an httpx.AsyncClient
  (one per request, see dependencies.get_http_client) whose timeout bounds
  every outbound call. Non-2xx responses, timeouts and transport errors all
  surface as ProviderUnavailableError carrying the upstream status code and a
  redacted, truncated message. Credentials are scrubbed from anything that is
  logged or returned.

Tokens:
  Providers that use short-lived access tokens (Pesapal, MTN MoMo) request a
  fresh token per operation. There is no shared token cache.
"""

import uuid
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import httpx

from payrail.exceptions import (
    InvalidInputError,
    InvalidPayloadError,
    NotificationChannelMissingError,
    ProviderUnavailableError,
)
from payrail.logging_config import get_logger
from payrail.models.transaction import TransactionStatus
from payrail.providers.registry import (
    CAPABILITIES,
    Flow,
    PaymentMethod,
    Provider,
    ProviderCapability,
)
from payrail.security import verify_with_scheme


logger = get_logger(__name__)

MAX_PROVIDER_DETAIL = 300
TWO_PLACES = Decimal("0.01")


@dataclass
class ProviderCredentials:
    """Decrypted credentials from the active ProviderConfig row."""
    provider: str
    country_code: str
    environment: str
    consumer_key: str
    consumer_secret: str
    ipn_id: str | None = None
    options: dict[str, Any] = field(default_factory=dict)

    @property
    def is_production(self) -> bool:
        return self.environment in ("production", "live")

    def secrets(self) -> list[str]:
        return [value for value in (self.consumer_key, self.consumer_secret) if value]

    def __repr__(self) -> str:
        return (
            f"ProviderCredentials(provider={self.provider!r}, "
            f"country_code={self.country_code!r}, environment={self.environment!r})"
        )


@dataclass
class InitiationIntent:
    """Everything an adapter needs to start a remote transaction."""
    transaction_id: uuid.UUID
    flow: Flow
    amount: Decimal
    currency: str
    country_code: str
    description: str
    payment_method: PaymentMethod | None = None
    customer_name: str | None = None
    customer_email: str | None = None
    customer_phone: str | None = None
    callback_url: str | None = None
    cancel_url: str | None = None
    notification_url: str | None = None
    # Withdrawal destination (mobile number or bank details)
    destination: dict[str, Any] = field(default_factory=dict)
    # Reference stored on the transaction before the call, see assign_reference()
    reference: str | None = None


@dataclass
class InitiationResult:
    external_reference: str
    status: TransactionStatus = TransactionStatus.PENDING
    redirect_url: str | None = None
    instructions: str | None = None
    # Persisted into transaction metadata
    diagnostics: dict[str, Any] = field(default_factory=dict)
    # Returned to the caller once and never persisted (e.g. virtual card PAN)
    sensitive: dict[str, Any] | None = None


@dataclass
class StatusResult:
    status: TransactionStatus
    raw_status: str | None
    diagnostics: dict[str, Any] = field(default_factory=dict)


@dataclass
class IpnRegistration:
    ipn_id: str
    url: str


@dataclass
class ProviderNotification:
    """
    Parsed inbound notification.

    raw_status is None when the provider only tells us *that* something
    happened (Pesapal, Pesepay). The status must then be fetched.
    """
    reference: str
    raw_status: str | None
    diagnostics: dict[str, Any] = field(default_factory=dict)


def redact(text: str | None, secrets: Iterable[str] = ()) -> str:
    """Replace every secret occurrence with *** and truncate."""
    if not text:
        return ""
    for secret in secrets:
        if secret:
            text = text.replace(secret, "***")
    if len(text) > MAX_PROVIDER_DETAIL:
        text = text[:MAX_PROVIDER_DETAIL] + "..."
    return text


def _may_have_arrived(exc: httpx.HTTPError) -> bool:
    # A request that never connected cannot have been acted on
    return not isinstance(exc, (httpx.ConnectError, httpx.ConnectTimeout))


def first_present(payload: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = payload.get(key)
        if value not in (None, ""):
            return value
    return None


class ProviderAdapter(ABC):
    provider: Provider
    # Lower-cased provider status → our status. Unknown values stay pending.
    STATUS_MAP: dict[str, TransactionStatus] = {}

    def __init__(self, http_client: httpx.AsyncClient):
        self.http_client = http_client

    @property
    def capability(self) -> ProviderCapability:
        return CAPABILITIES[self.provider]

    # -- status / amounts -------------------------------------------------

    def normalize_status(self, raw: Any) -> TransactionStatus:
        if raw is None:
            return TransactionStatus.PENDING
        return self.STATUS_MAP.get(str(raw).strip().lower(), TransactionStatus.PENDING)

    def to_provider_amount(self, amount: Decimal) -> int | float:
        """
        Convert a major-unit Decimal to what the provider API expects.

        Providers with a minor-unit multiplier (Paystack kobo) get an integer.
        """
        multiplier = self.capability.minor_unit_multiplier
        if multiplier != 1:
            minor = (amount * multiplier).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
            return int(minor)
        return float(amount.quantize(TWO_PLACES, rounding=ROUND_HALF_UP))

    def from_provider_amount(self, value: Any) -> Decimal:
        multiplier = self.capability.minor_unit_multiplier
        return (Decimal(str(value)) / multiplier).quantize(TWO_PLACES)

    # -- authenticity -----------------------------------------------------

    def verify(self, raw_body: bytes, headers: Mapping[str, str], secret: str | None) -> bool:
        return verify_with_scheme(self.capability.signature, raw_body, headers, secret)

    # -- provider operations ----------------------------------------------

    def ensure_ready(self, credentials: ProviderCredentials) -> None:
        """
        Raises:
            NotificationChannelMissingError: The rail needs a registered IPN
                and the config has none.
        """
        if self.capability.requires_ipn and not credentials.ipn_id:
            raise NotificationChannelMissingError(
                f"{self.provider.value} for {credentials.country_code} has no registered IPN"
            )

    def assign_reference(self, transaction_id: uuid.UUID) -> str | None:
        """
        Reference to persist before initiate() when we choose it ourselves.

        Rails that take our reference (MTN MoMo, Paymentology) return it here
        so a callback for a call whose response was lost still finds the
        transaction. Rails that assign their own return None.
        """
        return None

    @abstractmethod
    async def initiate(
        self, intent: InitiationIntent, credentials: ProviderCredentials
    ) -> InitiationResult:
        ...

    @abstractmethod
    async def fetch_status(
        self, reference: str, credentials: ProviderCredentials
    ) -> StatusResult:
        ...

    @abstractmethod
    def parse_notification(
        self,
        payload: Mapping[str, Any],
        credentials: ProviderCredentials | None = None,
    ) -> ProviderNotification:
        ...

    async def register_ipn(
        self, url: str, credentials: ProviderCredentials
    ) -> IpnRegistration:
        """Register `url` as the notification endpoint for these credentials."""
        raise InvalidInputError(
            f"{self.capability.display_name} does not support IPN registration"
        )

    # -- HTTP helpers -----------------------------------------------------

    async def _send(
        self,
        method: str,
        url: str,
        *,
        secrets: Iterable[str] = (),
        moves_money: bool = False,
        **kwargs: Any,
    ) -> httpx.Response:
        """
        Perform one outbound call and fail with ProviderUnavailableError on
        anything but a 2xx response.

        With moves_money=True a timeout or transport error is flagged
        outcome_unknown: the provider may have acted on the request.
        """
        secrets = list(secrets)
        try:
            response = await self.http_client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning("provider_timeout", provider=self.provider.value, url=url)
            raise ProviderUnavailableError(
                self.provider.value,
                None,
                "Provider request timed out",
                outcome_unknown=moves_money and _may_have_arrived(exc),
            ) from exc
        except httpx.HTTPError as exc:
            detail = redact(str(exc) or exc.__class__.__name__, secrets)
            logger.warning(
                "provider_transport_error",
                provider=self.provider.value,
                url=url,
                error=detail,
            )
            raise ProviderUnavailableError(
                self.provider.value,
                None,
                detail,
                outcome_unknown=moves_money and _may_have_arrived(exc),
            ) from exc

        if not response.is_success:
            detail = redact(response.text, secrets)
            logger.warning(
                "provider_error_response",
                provider=self.provider.value,
                url=url,
                status_code=response.status_code,
                detail=detail,
            )
            raise ProviderUnavailableError(
                self.provider.value, response.status_code, detail
            )
        return response

    def _json(self, response: httpx.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderUnavailableError(
                self.provider.value, response.status_code, "Provider returned a non-JSON body"
            ) from exc
        if not isinstance(data, dict):
            raise ProviderUnavailableError(
                self.provider.value, response.status_code, "Unexpected provider response"
            )
        return data

    def _require_reference(self, value: Any) -> str:
        if value in (None, ""):
            raise InvalidPayloadError("Notification does not carry a transaction reference")
        return str(value)
