"""
Paymentology adapter: bank withdrawals are paid out by issuing a virtual
card loaded with the withdrawal amount.

Credentials mapping:
  consumer_key     → terminal id
  consumer_secret  → terminal password
  options["campaign_uuid"] → card campaign

Requests are XML. Each carries a checksum: the sum of the UTF-8 bytes of
terminal id + password + the signed fields, modulo 256, as two upper-case
hex digits. ResponseCode 00 means the card was issued.

Issuance is synchronous, so initiate() already returns a terminal status.
The card number, expiry and CVV are handed back once in
InitiationResult.sensitive and never persisted; only the last four digits go
into transaction metadata.

The status request and the notification body are provisional until the
Paymentology integration contract is final.
"""

import uuid
import xml.etree.ElementTree as ET
from collections.abc import Mapping
from typing import Any

from defusedxml import DefusedXmlException
from defusedxml import ElementTree as SafeET

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
    redact,
)
from payrail.providers.registry import Provider


SANDBOX_BASE_URL = "https://sandbox-api.paymentology.com"
PRODUCTION_BASE_URL = "https://api.paymentology.com"
SUCCESS_CODE = "00"


def calculate_checksum(terminal_id: str, password: str, *fields: str) -> str:
    total = sum("".join([terminal_id, password, *fields]).encode())
    return f"{total % 256:02X}"


def build_xml(root_tag: str, fields: Mapping[str, str]) -> bytes:
    root = ET.Element(root_tag)
    for tag, value in fields.items():
        ET.SubElement(root, tag).text = value
    return ET.tostring(root, encoding="utf-8", xml_declaration=True)


def parse_xml(text: str | bytes) -> dict[str, str]:
    """
    Flatten the first level of an XML document into a dict.

    Entity declarations and external references are refused.
    """
    root = SafeET.fromstring(text, forbid_dtd=True)
    return {child.tag: (child.text or "").strip() for child in root}


class PaymentologyAdapter(ProviderAdapter):
    provider = Provider.PAYMENTOLOGY

    STATUS_MAP = {
        "00": TransactionStatus.COMPLETED,
        "issued": TransactionStatus.COMPLETED,
        "approved": TransactionStatus.COMPLETED,
        "completed": TransactionStatus.COMPLETED,
        "declined": TransactionStatus.FAILED,
        "failed": TransactionStatus.FAILED,
        "cancelled": TransactionStatus.FAILED,
        "pending": TransactionStatus.PENDING,
    }

    def base_url(self, credentials: ProviderCredentials) -> str:
        return PRODUCTION_BASE_URL if credentials.is_production else SANDBOX_BASE_URL

    def assign_reference(self, transaction_id: uuid.UUID) -> str:
        return f"WD-{transaction_id.hex}"

    async def _post_xml(
        self,
        url: str,
        body: bytes,
        credentials: ProviderCredentials,
        moves_money: bool = False,
    ) -> tuple[dict[str, str], int]:
        response = await self._send(
            "POST",
            url,
            content=body,
            headers={"Content-Type": "application/xml"},
            secrets=credentials.secrets(),
            moves_money=moves_money,
        )
        try:
            return parse_xml(response.text), response.status_code
        except (ET.ParseError, DefusedXmlException) as exc:
            raise ProviderUnavailableError(
                self.provider.value, response.status_code, "Provider returned invalid XML"
            ) from exc

    async def initiate(
        self, intent: InitiationIntent, credentials: ProviderCredentials
    ) -> InitiationResult:
        reference = intent.reference or self.assign_reference(intent.transaction_id)
        amount = f"{intent.amount:.2f}"
        checksum = calculate_checksum(
            credentials.consumer_key,
            credentials.consumer_secret,
            amount,
            intent.currency,
            reference,
        )
        body = build_xml(
            "CardIssuanceRequest",
            {
                "TerminalID": credentials.consumer_key,
                "Checksum": checksum,
                "CampaignUUID": str(credentials.options.get("campaign_uuid", "")),
                "CardType": "Virtual",
                "Amount": amount,
                "Currency": intent.currency,
                "Reference": reference,
                "CardholderName": intent.customer_name or "",
            },
        )
        data, status_code = await self._post_xml(
            f"{self.base_url(credentials)}/card/issue", body, credentials, moves_money=True
        )

        code = data.get("ResponseCode")
        card_number = data.get("CardNumber")
        if code == SUCCESS_CODE and card_number:
            return InitiationResult(
                external_reference=reference,
                status=TransactionStatus.COMPLETED,
                instructions="Virtual card issued",
                diagnostics={
                    "paymentology_response_code": code,
                    "card_last_4": card_number[-4:],
                    "expiry_date": data.get("ExpiryDate"),
                },
                sensitive={
                    "number": card_number,
                    "expiry": data.get("ExpiryDate"),
                    "cvv": data.get("CVV"),
                    "last4": card_number[-4:],
                },
            )

        return InitiationResult(
            external_reference=reference,
            status=TransactionStatus.FAILED,
            instructions="Card issuance failed",
            diagnostics={
                "paymentology_response_code": code,
                "paymentology_message": redact(
                    data.get("ResponseMessage") or "Card issuance failed",
                    credentials.secrets(),
                ),
            },
        )

    async def fetch_status(
        self, reference: str, credentials: ProviderCredentials
    ) -> StatusResult:
        body = build_xml(
            "CardStatusRequest",
            {
                "TerminalID": credentials.consumer_key,
                "Checksum": calculate_checksum(
                    credentials.consumer_key, credentials.consumer_secret, reference
                ),
                "Reference": reference,
            },
        )
        data, _ = await self._post_xml(
            f"{self.base_url(credentials)}/card/status", body, credentials
        )
        raw_status = data.get("Status") or data.get("ResponseCode")
        return StatusResult(
            status=self.normalize_status(raw_status),
            raw_status=raw_status,
            diagnostics={
                "paymentology_status": raw_status,
                "paymentology_message": data.get("ResponseMessage"),
            },
        )

    def parse_notification(
        self,
        payload: Mapping[str, Any],
        credentials: ProviderCredentials | None = None,
    ) -> ProviderNotification:
        raw_status = first_present(payload, "status", "responseCode", "ResponseCode")
        return ProviderNotification(
            reference=self._require_reference(first_present(payload, "reference", "Reference")),
            raw_status=raw_status,
            diagnostics={"paymentology_status": raw_status},
        )
