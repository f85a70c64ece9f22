"""
MTN MoMo disbursement adapter (withdrawals to mobile wallets).

Credentials mapping:
  consumer_key     → API user (UUID)
  consumer_secret  → API key
  settings.MTN_MOMO_SUBSCRIPTION_KEY → Ocp-Apim-Subscription-Key
  options["target_environment"]      → X-Target-Environment in production
                                       (varies per country, e.g. "mtncameroon")

The sandbox only accepts EUR, so sandbox transfers are sent in EUR whatever
the merchant currency is.

A transfer is accepted with 202 and no body. The X-Reference-Id is chosen by
us (assign_reference) and stored on the transaction before the transfer is
sent; it is also sent as externalId so callbacks can be matched by either
field. A transfer status lookup that answers 404 means MTN never received
the transfer, which settles it as failed.
"""

import uuid
from collections.abc import Mapping
from typing import Any

import httpx

from payrail.config import settings
from payrail.exceptions import ProviderUnavailableError
from payrail.models.transaction import TransactionStatus
from payrail.providers.base import (
    InitiationIntent,
    InitiationResult,
    ProviderAdapter,
    ProviderCredentials,
    ProviderNotification,
    StatusResult,
    first_present,
)
from payrail.providers.registry import Provider


SANDBOX_BASE_URL = "https://sandbox.momodeveloper.mtn.com"
PRODUCTION_BASE_URL = "https://momodeveloper.mtn.com"
SANDBOX_CURRENCY = "EUR"


class MtnMomoAdapter(ProviderAdapter):
    provider = Provider.MTN_MOMO

    STATUS_MAP = {
        "successful": TransactionStatus.COMPLETED,
        "failed": TransactionStatus.FAILED,
        "rejected": TransactionStatus.FAILED,
        "timeout": TransactionStatus.FAILED,
        "pending": TransactionStatus.PENDING,
    }

    def base_url(self, credentials: ProviderCredentials) -> str:
        return PRODUCTION_BASE_URL if credentials.is_production else SANDBOX_BASE_URL

    def target_environment(self, credentials: ProviderCredentials) -> str:
        if not credentials.is_production:
            return "sandbox"
        return credentials.options.get("target_environment") or "mtncameroon"

    def transfer_currency(self, currency: str, credentials: ProviderCredentials) -> str:
        return currency if credentials.is_production else SANDBOX_CURRENCY

    def assign_reference(self, transaction_id: uuid.UUID) -> str:
        return str(uuid.uuid4())

    def _secrets(self, credentials: ProviderCredentials) -> list[str]:
        return [*credentials.secrets(), settings.MTN_MOMO_SUBSCRIPTION_KEY]

    async def request_token(self, credentials: ProviderCredentials) -> str:
        response = await self._send(
            "POST",
            f"{self.base_url(credentials)}/disbursement/token/",
            auth=httpx.BasicAuth(credentials.consumer_key, credentials.consumer_secret),
            headers={"Ocp-Apim-Subscription-Key": settings.MTN_MOMO_SUBSCRIPTION_KEY},
            secrets=self._secrets(credentials),
        )
        token = self._json(response).get("access_token")
        if not token:
            raise ProviderUnavailableError(
                self.provider.value, response.status_code, "No access token returned"
            )
        return token

    def _headers(self, token: str, credentials: ProviderCredentials) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "X-Target-Environment": self.target_environment(credentials),
            "Ocp-Apim-Subscription-Key": settings.MTN_MOMO_SUBSCRIPTION_KEY,
        }

    async def initiate(
        self, intent: InitiationIntent, credentials: ProviderCredentials
    ) -> InitiationResult:
        mobile_number = (intent.destination.get("mobile_number") or "").replace("+", "")
        token = await self.request_token(credentials)
        reference = intent.reference or self.assign_reference(intent.transaction_id)
        currency = self.transfer_currency(intent.currency, credentials)
        headers = self._headers(token, credentials)
        headers["X-Reference-Id"] = reference
        if intent.notification_url:
            headers["X-Callback-Url"] = intent.notification_url

        await self._send(
            "POST",
            f"{self.base_url(credentials)}/disbursement/v1_0/transfer",
            json={
                "amount": str(intent.amount),
                "currency": currency,
                "externalId": reference,
                "payee": {"partyIdType": "MSISDN", "partyId": mobile_number},
                "payerMessage": f"Withdrawal of {currency} {intent.amount}",
                "payeeNote": intent.description,
            },
            headers=headers,
            secrets=[*self._secrets(credentials), token],
            moves_money=True,
        )
        return InitiationResult(
            external_reference=reference,
            instructions="Funds will be sent to your mobile money wallet",
            diagnostics={
                "momo_reference_id": reference,
                "momo_currency": currency,
                "momo_target_environment": self.target_environment(credentials),
            },
        )

    async def fetch_status(
        self, reference: str, credentials: ProviderCredentials
    ) -> StatusResult:
        token = await self.request_token(credentials)
        try:
            response = await self._send(
                "GET",
                f"{self.base_url(credentials)}/disbursement/v1_0/transfer/{reference}",
                headers=self._headers(token, credentials),
                secrets=[*self._secrets(credentials), token],
            )
        except ProviderUnavailableError as exc:
            if exc.upstream_status != 404:
                raise
            return StatusResult(
                status=TransactionStatus.FAILED,
                raw_status="NOT_FOUND",
                diagnostics={"momo_status": "NOT_FOUND", "momo_reason": exc.provider_detail},
            )
        data = self._json(response)
        return StatusResult(
            status=self.normalize_status(data.get("status")),
            raw_status=data.get("status"),
            diagnostics=_diagnostics(data),
        )

    def parse_notification(
        self,
        payload: Mapping[str, Any],
        credentials: ProviderCredentials | None = None,
    ) -> ProviderNotification:
        reference = first_present(payload, "referenceId", "externalId")
        return ProviderNotification(
            reference=self._require_reference(reference),
            raw_status=payload.get("status"),
            diagnostics=_diagnostics(payload),
        )


def _diagnostics(data: Mapping[str, Any]) -> dict[str, Any]:
    reason = data.get("reason")
    if isinstance(reason, Mapping):
        reason = reason.get("message") or reason.get("code")
    return {
        "momo_status": data.get("status"),
        "momo_financial_transaction_id": data.get("financialTransactionId"),
        "momo_reason": reason,
    }
