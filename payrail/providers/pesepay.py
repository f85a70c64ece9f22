"""
Pesepay adapter (Zimbabwe mobile money and card collection).

The platform is the merchant of record with Pesepay and acts as an
aggregator, so every Pesepay call uses the ZW ProviderConfig no matter where
the paying merchant is registered (see registry.config_country).

Request and response bodies are wrapped as {"payload": <base64 ciphertext>}:
AES-256-CBC with PKCS7 padding, key = first 32 characters of the encryption
key, IV = first 16 characters of the same key. The integration key goes in the
`authorization` header without a scheme prefix.

Notifications may arrive encrypted or in plain JSON. Their status field is
not trusted: the reported value is kept as a diagnostic and the real status is
always fetched from the status endpoint.

Payments carry their own resultUrl, so an IPN is optional here.
register_ipn() subscribes a standing webhook for the payment events and its
id is kept on the config for reference.

The status and webhook registration paths are provisional until Pesepay
confirms them for the payments-engine v1 API.
"""

import base64
import binascii
import json
from collections.abc import Mapping
from typing import Any

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from payrail.exceptions import InvalidPayloadError, ProviderUnavailableError
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
)
from payrail.providers.registry import Provider


BASE_URL = "https://api.pesepay.com"
INITIATE_PATH = "/api/payments-engine/v1/payments/initiate"
STATUS_PATH = "/api/payments/{reference}/status"
WEBHOOK_REGISTER_PATH = "/api/webhooks/register"
WEBHOOK_EVENTS = ["payment.completed", "payment.failed", "payment.pending"]


def _key_material(encryption_key: str) -> tuple[bytes, bytes]:
    if len(encryption_key) < 32:
        raise ValueError("Pesepay encryption key must be at least 32 characters")
    raw = encryption_key.encode()
    return raw[:32], raw[:16]


def encrypt_payload(data: Mapping[str, Any], encryption_key: str) -> str:
    key, iv = _key_material(encryption_key)
    padder = padding.PKCS7(128).padder()
    plaintext = padder.update(json.dumps(data).encode()) + padder.finalize()
    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    ciphertext = encryptor.update(plaintext) + encryptor.finalize()
    return base64.b64encode(ciphertext).decode()


def decrypt_payload(token: str, encryption_key: str) -> dict[str, Any]:
    """
    Raises:
        ValueError: bad base64, bad padding, or the plaintext is not a JSON object.
    """
    key, iv = _key_material(encryption_key)
    try:
        ciphertext = base64.b64decode(token, validate=True)
    except binascii.Error as exc:
        raise ValueError("Payload is not base64") from exc
    decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
    padded = decryptor.update(ciphertext) + decryptor.finalize()
    unpadder = padding.PKCS7(128).unpadder()
    plaintext = unpadder.update(padded) + unpadder.finalize()
    data = json.loads(plaintext)
    if not isinstance(data, dict):
        raise ValueError("Payload is not a JSON object")
    return data


class PesepayAdapter(ProviderAdapter):
    provider = Provider.PESEPAY

    STATUS_MAP = {
        "completed": TransactionStatus.COMPLETED,
        "success": TransactionStatus.COMPLETED,
        "successful": TransactionStatus.COMPLETED,
        "paid": TransactionStatus.COMPLETED,
        "confirmed": TransactionStatus.COMPLETED,
        "failed": TransactionStatus.FAILED,
        "cancelled": TransactionStatus.FAILED,
        "canceled": TransactionStatus.FAILED,
        "declined": TransactionStatus.FAILED,
        "rejected": TransactionStatus.FAILED,
        "expired": TransactionStatus.FAILED,
        "pending": TransactionStatus.PENDING,
        "processing": TransactionStatus.PENDING,
        "initiated": TransactionStatus.PENDING,
    }

    def _headers(self, credentials: ProviderCredentials) -> dict[str, str]:
        return {"authorization": credentials.consumer_key, "Accept": "application/json"}

    def _unwrap(self, body: Mapping[str, Any], credentials: ProviderCredentials, status_code: int):
        if "payload" not in body:
            return dict(body)
        try:
            return decrypt_payload(body["payload"], credentials.consumer_secret)
        except ValueError as exc:
            raise ProviderUnavailableError(
                self.provider.value, status_code, "Could not decrypt provider response"
            ) from exc

    async def initiate(
        self, intent: InitiationIntent, credentials: ProviderCredentials
    ) -> InitiationResult:
        transaction = {
            "amountDetails": {
                "amount": self.to_provider_amount(intent.amount),
                "currencyCode": intent.currency,
            },
            "merchantReference": str(intent.transaction_id),
            "reasonForPayment": intent.description or "Payment",
            "resultUrl": intent.notification_url,
            "returnUrl": intent.callback_url,
            "customer": {
                "email": intent.customer_email,
                "phoneNumber": intent.customer_phone or "",
                "name": intent.customer_name,
            },
        }
        response = await self._send(
            "POST",
            f"{BASE_URL}{INITIATE_PATH}",
            json={"payload": encrypt_payload(transaction, credentials.consumer_secret)},
            headers=self._headers(credentials),
            secrets=credentials.secrets(),
        )
        data = self._unwrap(self._json(response), credentials, response.status_code)
        reference = first_present(data, "referenceNumber", "reference")
        redirect_url = first_present(data, "redirectUrl", "paymentUrl", "pollUrl")
        if not reference or not redirect_url:
            raise ProviderUnavailableError(
                self.provider.value, response.status_code, "Incomplete initiation response"
            )
        return InitiationResult(
            external_reference=str(reference),
            redirect_url=redirect_url,
            diagnostics={
                "pesepay_reference": reference,
                "pesepay_poll_url": data.get("pollUrl"),
                "pesepay_redirect_url": redirect_url,
            },
        )

    async def register_ipn(
        self, url: str, credentials: ProviderCredentials
    ) -> IpnRegistration:
        response = await self._send(
            "POST",
            f"{BASE_URL}{WEBHOOK_REGISTER_PATH}",
            json={"url": url, "events": WEBHOOK_EVENTS},
            headers=self._headers(credentials),
            secrets=credentials.secrets(),
        )
        data = self._unwrap(self._json(response), credentials, response.status_code)
        ipn_id = first_present(data, "webhook_id", "webhookId", "id", "ipn_id", "ipnId")
        if not ipn_id:
            raise ProviderUnavailableError(
                self.provider.value, response.status_code, "No webhook id returned"
            )
        return IpnRegistration(ipn_id=str(ipn_id), url=url)

    async def fetch_status(
        self, reference: str, credentials: ProviderCredentials
    ) -> StatusResult:
        response = await self._send(
            "GET",
            f"{BASE_URL}{STATUS_PATH.format(reference=reference)}",
            headers=self._headers(credentials),
            secrets=credentials.secrets(),
        )
        data = self._unwrap(self._json(response), credentials, response.status_code)
        raw_status = first_present(data, "transactionStatus", "status", "paymentStatus")
        return StatusResult(
            status=self.normalize_status(raw_status),
            raw_status=raw_status,
            diagnostics={
                "pesepay_status": raw_status,
                "pesepay_status_description": data.get("transactionStatusDescription"),
            },
        )

    def parse_notification(
        self,
        payload: Mapping[str, Any],
        credentials: ProviderCredentials | None = None,
    ) -> ProviderNotification:
        data: Mapping[str, Any] = payload
        if "payload" in payload:
            if credentials is None:
                raise InvalidPayloadError()
            try:
                data = decrypt_payload(payload["payload"], credentials.consumer_secret)
            except (ValueError, TypeError) as exc:
                raise InvalidPayloadError() from exc

        reference = first_present(
            data,
            "referenceNumber",
            "reference",
            "paymentReference",
            "payment_reference",
            "reference_number",
        )
        reported = first_present(data, "transactionStatus", "status", "paymentStatus")
        return ProviderNotification(
            reference=self._require_reference(reference),
            raw_status=None,
            diagnostics={"pesepay_reported_status": reported},
        )
