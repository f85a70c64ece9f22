"""
Merchant notifications — best-effort webhook to the merchant's own system.

When a payment created with a `webhook_url` reaches completed, the merchant
receives a `payment.completed` event. The event is captured when the
transition is applied and delivered only after the transition has been
committed (see reconciliation_service.publish_transition), so a merchant
is never told about a state that did not persist and no outbound call runs
inside an open write transaction.

Delivery is best effort: any failure is logged and swallowed, and never
affects the already-committed transition.
"""

from dataclasses import dataclass
from typing import Any

import httpx

from payrail.config import settings
from payrail.logging_config import get_logger
from payrail.models.transaction import Transaction, TransactionStatus


logger = get_logger(__name__)


@dataclass
class MerchantEvent:
    transaction_id: str
    url: str
    payload: dict[str, Any]


def build_event(transaction: Transaction) -> dict:
    metadata = transaction.metadata_ or {}
    return {
        "event": f"{transaction.type}.{transaction.status}",
        "transaction_id": str(transaction.id),
        "reference": transaction.reference,
        "amount": str(transaction.amount),
        "currency": transaction.currency,
        "status": transaction.status,
        "payer_email": metadata.get("payer_email"),
        "payer_name": metadata.get("payer_name"),
        "completed_at": transaction.completed_at.isoformat() if transaction.completed_at else None,
    }


def event_for(transaction: Transaction) -> MerchantEvent | None:
    """The event owed to the merchant for this transition, if any."""
    webhook_url = (transaction.metadata_ or {}).get("webhook_url")
    if not webhook_url or transaction.status != TransactionStatus.COMPLETED.value:
        return None
    return MerchantEvent(str(transaction.id), webhook_url, build_event(transaction))


async def deliver(http_client: httpx.AsyncClient, event: MerchantEvent) -> bool:
    """
    POST the event to the merchant webhook.

    Returns True when a 2xx response was received.
    """
    try:
        response = await http_client.post(
            event.url,
            json=event.payload,
            timeout=settings.MERCHANT_WEBHOOK_TIMEOUT_SECONDS,
        )
    except httpx.HTTPError as exc:
        logger.warning(
            "merchant_webhook_failed",
            transaction_id=event.transaction_id,
            error=exc.__class__.__name__,
        )
        return False

    if not response.is_success:
        logger.warning(
            "merchant_webhook_rejected",
            transaction_id=event.transaction_id,
            status_code=response.status_code,
        )
        return False

    logger.info("merchant_webhook_delivered", transaction_id=event.transaction_id)
    return True
