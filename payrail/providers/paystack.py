"""
Paystack adapter (card acquiring, Nigeria only).

Paystack works in kobo: amounts go out multiplied by 100 and the only
accepted currency is NGN. We pass our transaction id as the Paystack
reference, so webhooks and verify calls can be matched directly.

Webhooks carry the final status in `data.status` and are signed with
HMAC-SHA512 of the raw body under the secret key (x-paystack-signature).
"""

from collections.abc import Mapping
from typing import Any

from payrail.exceptions import InvalidPayloadError, ProviderUnavailableError
from payrail.models.transaction import TransactionStatus
from payrail.providers.base import (
    InitiationIntent,
    InitiationResult,
    ProviderAdapter,
    ProviderCredentials,
    ProviderNotification,
    StatusResult,
    redact,
)
from payrail.providers.registry import Provider


BASE_URL = "https://api.paystack.co"


class PaystackAdapter(ProviderAdapter):
    provider = Provider.PAYSTACK

    STATUS_MAP = {
        "success": TransactionStatus.COMPLETED,
        "failed": TransactionStatus.FAILED,
        "reversed": TransactionStatus.FAILED,
        "abandoned": TransactionStatus.FAILED,
        "ongoing": TransactionStatus.PENDING,
        "pending": TransactionStatus.PENDING,
        "processing": TransactionStatus.PENDING,
        "queued": TransactionStatus.PENDING,
    }

    def _headers(self, credentials: ProviderCredentials) -> dict[str, str]:
        return {"Authorization": f"Bearer {credentials.consumer_secret}"}

    async def initiate(
        self, intent: InitiationIntent, credentials: ProviderCredentials
    ) -> InitiationResult:
        reference = str(intent.transaction_id)
        response = await self._send(
            "POST",
            f"{BASE_URL}/transaction/initialize",
            json={
                "email": intent.customer_email,
                "amount": self.to_provider_amount(intent.amount),
                "currency": intent.currency,
                "reference": reference,
                "callback_url": intent.callback_url,
                "metadata": {"transaction_id": reference},
            },
            headers=self._headers(credentials),
            secrets=credentials.secrets(),
        )
        body = self._json(response)
        data = body.get("data") or {}
        if not body.get("status") or not data.get("authorization_url"):
            raise ProviderUnavailableError(
                self.provider.value,
                response.status_code,
                redact(body.get("message") or "Initialization failed", credentials.secrets()),
            )
        return InitiationResult(
            external_reference=data.get("reference") or reference,
            redirect_url=data["authorization_url"],
            diagnostics={"paystack_access_code": data.get("access_code")},
        )

    async def fetch_status(
        self, reference: str, credentials: ProviderCredentials
    ) -> StatusResult:
        response = await self._send(
            "GET",
            f"{BASE_URL}/transaction/verify/{reference}",
            headers=self._headers(credentials),
            secrets=credentials.secrets(),
        )
        data = self._json(response).get("data") or {}
        raw_status = data.get("status")
        return StatusResult(
            status=self.normalize_status(raw_status),
            raw_status=raw_status,
            diagnostics=_diagnostics(data),
        )

    def parse_notification(
        self,
        payload: Mapping[str, Any],
        credentials: ProviderCredentials | None = None,
    ) -> ProviderNotification:
        data = payload.get("data")
        if not isinstance(data, Mapping):
            raise InvalidPayloadError()
        diagnostics = _diagnostics(data)
        diagnostics["paystack_event"] = payload.get("event")
        return ProviderNotification(
            reference=self._require_reference(data.get("reference")),
            raw_status=data.get("status"),
            diagnostics=diagnostics,
        )


def _diagnostics(data: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "paystack_status": data.get("status"),
        "paystack_gateway_response": data.get("gateway_response"),
        "paystack_channel": data.get("channel"),
        "paystack_id": data.get("id"),
    }
