"""
Webhooks router — asynchronous status notifications from providers.

Endpoints (no JWT; each request is authenticated by its provider signature):
  POST /webhooks/paystack
  POST /webhooks/pesapal
  POST /webhooks/pesepay
  POST /webhooks/mtn-momo
  POST /webhooks/paymentology

The signature is checked over the raw request bytes before anything is
parsed. A request that fails verification changes nothing. Redelivered
notifications are acknowledged with outcome "duplicate".
"""

import json

import httpx
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from payrail.database import get_db
from payrail.dependencies import get_http_client
from payrail.exceptions import InvalidPayloadError, SignatureInvalidError
from payrail.logging_config import get_logger
from payrail.providers.registry import CAPABILITIES, Provider, webhook_slug
from payrail.security import verify_notification, webhook_secret_for
from payrail.services import reconciliation_service

logger = get_logger(__name__)

router = APIRouter()


async def handle_notification(
    provider: Provider,
    request: Request,
    db: AsyncSession,
    http_client: httpx.AsyncClient,
) -> dict:
    raw_body = await request.body()

    if not verify_notification(provider, raw_body, request.headers, webhook_secret_for(provider)):
        logger.warning(
            "webhook_signature_rejected",
            provider=provider.value,
            client=request.client.host if request.client else None,
        )
        raise SignatureInvalidError()

    try:
        payload = json.loads(raw_body)
    except ValueError:
        raise InvalidPayloadError("Notification body is not valid JSON")
    if not isinstance(payload, dict):
        raise InvalidPayloadError("Notification body must be a JSON object")

    result = await reconciliation_service.reconcile_notification(
        db, http_client, provider, payload
    )
    await reconciliation_service.publish_transition(db, http_client, result)
    return {"received": True, **result.summary()}


def _register(provider: Provider) -> None:
    async def receive(
        request: Request,
        db: AsyncSession = Depends(get_db),
        http_client: httpx.AsyncClient = Depends(get_http_client),
    ):
        return await handle_notification(provider, request, db, http_client)

    router.add_api_route(
        f"/{webhook_slug(provider)}",
        receive,
        methods=["POST"],
        name=f"{provider.value}_webhook",
        summary=f"{CAPABILITIES[provider].display_name} notification",
    )


for _provider in CAPABILITIES:
    _register(_provider)
