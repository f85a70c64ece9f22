"""
Pesapal v3 adapter (card, mobile money and bank transfer collection in East
and Southern Africa).

Flow:
  1. POST /api/Auth/RequestToken with consumer key/secret → bearer token
  2. POST /api/Transactions/SubmitOrderRequest → order_tracking_id + redirect_url
  3. Payer completes checkout on Pesapal's hosted page
  4. Pesapal calls our IPN with OrderTrackingId only; we call
     GET /api/Transactions/GetTransactionStatus to learn the outcome

Every order must name a registered IPN. register_ipn() calls
POST /api/URLSetup/RegisterIPN once per config and the returned ipn_id is
stored on the ProviderConfig; initiate() refuses to run without it.

The order tracking id is the transaction reference.
"""

from collections.abc import Mapping
from typing import Any

from payrail.exceptions import ProviderUnavailableError
from payrail.models.transaction import TransactionStatus
from payrail.providers.base import (
    InitiationIntent,
    InitiationResult,
    IpnRegistration,
    ProviderAdapter,
    ProviderCredentials,
    ProviderNotification,
    StatusResult,
    first_present,
    redact,
)
from payrail.providers.registry import Provider


SANDBOX_BASE_URL = "https://cybqa.pesapal.com/pesapalv3"
PRODUCTION_BASE_URL = "https://pay.pesapal.com/v3"


class PesapalAdapter(ProviderAdapter):
    provider = Provider.PESAPAL

    # payment_status_description values; "invalid" covers expired/abandoned orders
    STATUS_MAP = {
        "completed": TransactionStatus.COMPLETED,
        "failed": TransactionStatus.FAILED,
        "invalid": TransactionStatus.FAILED,
        "reversed": TransactionStatus.FAILED,
        "pending": TransactionStatus.PENDING,
    }

    # payment_status_code, used when the description is missing
    STATUS_CODE_MAP = {
        "0": TransactionStatus.PENDING,
        "1": TransactionStatus.COMPLETED,
        "2": TransactionStatus.FAILED,
        "3": TransactionStatus.FAILED,
    }

    def base_url(self, credentials: ProviderCredentials) -> str:
        return PRODUCTION_BASE_URL if credentials.is_production else SANDBOX_BASE_URL

    async def request_token(self, credentials: ProviderCredentials) -> str:
        response = await self._send(
            "POST",
            f"{self.base_url(credentials)}/api/Auth/RequestToken",
            json={
                "consumer_key": credentials.consumer_key,
                "consumer_secret": credentials.consumer_secret,
            },
            headers={"Accept": "application/json"},
            secrets=credentials.secrets(),
        )
        data = self._json(response)
        token = data.get("token")
        if not token:
            raise ProviderUnavailableError(
                self.provider.value,
                response.status_code,
                redact(_error_message(data) or "No token returned", credentials.secrets()),
            )
        return token

    async def initiate(
        self, intent: InitiationIntent, credentials: ProviderCredentials
    ) -> InitiationResult:
        self.ensure_ready(credentials)
        token = await self.request_token(credentials)
        first_name, _, last_name = (intent.customer_name or "").partition(" ")
        body = {
            "id": str(intent.transaction_id),
            "currency": intent.currency,
            "amount": self.to_provider_amount(intent.amount),
            "description": intent.description[:100],
            "callback_url": intent.callback_url,
            "cancellation_url": intent.cancel_url,
            "notification_id": credentials.ipn_id,
            "billing_address": {
                "email_address": intent.customer_email,
                "phone_number": intent.customer_phone,
                "country_code": intent.country_code,
                "first_name": first_name,
                "last_name": last_name,
            },
        }
        response = await self._send(
            "POST",
            f"{self.base_url(credentials)}/api/Transactions/SubmitOrderRequest",
            json=body,
            headers={"Authorization": f"Bearer {token}", "Accept": "application/json"},
            secrets=[*credentials.secrets(), token],
        )
        data = self._json(response)
        tracking_id = data.get("order_tracking_id")
        if data.get("error") or not tracking_id:
            raise ProviderUnavailableError(
                self.provider.value,
                response.status_code,
                redact(_error_message(data) or "Order was not accepted", credentials.secrets()),
            )
        return InitiationResult(
            external_reference=tracking_id,
            redirect_url=data.get("redirect_url"),
            diagnostics={
                "pesapal_merchant_reference": data.get("merchant_reference"),
                "pesapal_redirect_url": data.get("redirect_url"),
            },
        )

    async def register_ipn(
        self, url: str, credentials: ProviderCredentials
    ) -> IpnRegistration:
        token = await self.request_token(credentials)
        response = await self._send(
            "POST",
            f"{self.base_url(credentials)}/api/URLSetup/RegisterIPN",
            json={"url": url, "ipn_notification_type": "POST"},
            headers={"Authorization": f"Bearer {token}", "Accept": "application/json"},
            secrets=[*credentials.secrets(), token],
        )
        data = self._json(response)
        ipn_id = data.get("ipn_id")
        if data.get("error") or not ipn_id:
            raise ProviderUnavailableError(
                self.provider.value,
                response.status_code,
                redact(_error_message(data) or "IPN was not registered", credentials.secrets()),
            )
        return IpnRegistration(ipn_id=str(ipn_id), url=data.get("url") or url)

    async def fetch_status(
        self, reference: str, credentials: ProviderCredentials
    ) -> StatusResult:
        token = await self.request_token(credentials)
        response = await self._send(
            "GET",
            f"{self.base_url(credentials)}/api/Transactions/GetTransactionStatus",
            params={"orderTrackingId": reference},
            headers={"Authorization": f"Bearer {token}", "Accept": "application/json"},
            secrets=[*credentials.secrets(), token],
        )
        data = self._json(response)
        description = data.get("payment_status_description")
        if description:
            status = self.normalize_status(description)
        else:
            code = data.get("status_code", data.get("payment_status_code"))
            status = self.STATUS_CODE_MAP.get(str(code), TransactionStatus.PENDING)
        return StatusResult(
            status=status,
            raw_status=description,
            diagnostics={
                "pesapal_status": description,
                "pesapal_method": data.get("payment_method"),
                "confirmation_code": data.get("confirmation_code"),
            },
        )

    def parse_notification(
        self,
        payload: Mapping[str, Any],
        credentials: ProviderCredentials | None = None,
    ) -> ProviderNotification:
        reference = self._require_reference(
            first_present(payload, "OrderTrackingId", "orderTrackingId")
        )
        return ProviderNotification(
            reference=reference,
            raw_status=None,
            diagnostics={
                "pesapal_notification_type": payload.get("OrderNotificationType"),
                "pesapal_merchant_reference": payload.get("OrderMerchantReference"),
            },
        )


def _error_message(data: Mapping[str, Any]) -> str | None:
    error = data.get("error")
    if isinstance(error, Mapping):
        return error.get("message") or error.get("code")
    if error:
        return str(error)
    return data.get("message")
