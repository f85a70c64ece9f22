"""
Admin router — provider configuration management and org-wide visibility.

All endpoints require ADMIN role. Every provider configuration change writes
an audit log row in the same database transaction as the change.

Endpoints:
  GET    /admin/provider-configs                 — List configs (filter by country/provider)
  POST   /admin/provider-configs                 — Create a config
  GET    /admin/provider-configs/{config_id}     — Get one config
  PATCH  /admin/provider-configs/{config_id}     — Partial update
  DELETE /admin/provider-configs/{config_id}     — Delete
  POST   /admin/provider-configs/{config_id}/register-ipn — Register the provider IPN
  GET    /admin/audit-logs                       — Recent audit entries
  GET    /admin/transactions                     — All transactions
  GET    /admin/transactions/{transaction_id}    — Any transaction by ID

Secrets are never returned: responses omit consumer_secret and mask the
consumer key.
"""

import uuid

import httpx
from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from payrail.database import get_db
from payrail.dependencies import get_http_client, require_admin
from payrail.models.user import User
from payrail.schemas.provider_config import (
    AuditLogResponse,
    IpnRegistrationRequest,
    ProviderConfigCreateRequest,
    ProviderConfigResponse,
    ProviderConfigUpdateRequest,
)
from payrail.schemas.transaction import TransactionResponse
from payrail.services import provider_config_service, transaction_service

router = APIRouter()


# ---------------------------------------------------------------------------
# Provider configuration
# ---------------------------------------------------------------------------

@router.get(
    "/provider-configs",
    response_model=list[ProviderConfigResponse],
    summary="[Admin] List provider configurations",
)
async def admin_list_provider_configs(
    country_code: str | None = Query(None, pattern="^[A-Za-z]{2}$"),
    provider: str | None = Query(None),
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await provider_config_service.admin_list_configs(
        db, country_code=country_code, provider=provider
    )


@router.post(
    "/provider-configs",
    response_model=ProviderConfigResponse,
    status_code=status.HTTP_201_CREATED,
    summary="[Admin] Create a provider configuration",
)
async def admin_create_provider_config(
    request: ProviderConfigCreateRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """
    Store credentials for one provider in one country.

    Only one configuration per (provider, country) may be active; creating a
    second active one returns 409.
    """
    return await provider_config_service.admin_create_config(
        db,
        admin_user_id=admin.id,
        provider=request.provider,
        country_code=request.country_code,
        environment=request.environment,
        consumer_key=request.consumer_key,
        consumer_secret=request.consumer_secret,
        ipn_id=request.ipn_id,
        options=request.options,
        is_active=request.is_active,
    )


@router.get(
    "/provider-configs/{config_id}",
    response_model=ProviderConfigResponse,
    summary="[Admin] Get a provider configuration",
)
async def admin_get_provider_config(
    config_id: uuid.UUID,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await provider_config_service.admin_get_config(db, config_id)


@router.patch(
    "/provider-configs/{config_id}",
    response_model=ProviderConfigResponse,
    summary="[Admin] Update a provider configuration",
)
async def admin_update_provider_config(
    config_id: uuid.UUID,
    request: ProviderConfigUpdateRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    # ipn_id is the only field that may be cleared with an explicit null
    changes = {
        key: value
        for key, value in request.model_dump(exclude_unset=True).items()
        if value is not None or key == "ipn_id"
    }
    return await provider_config_service.admin_update_config(
        db,
        admin_user_id=admin.id,
        config_id=config_id,
        changes=changes,
    )


@router.delete(
    "/provider-configs/{config_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="[Admin] Delete a provider configuration",
)
async def admin_delete_provider_config(
    config_id: uuid.UUID,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    await provider_config_service.admin_delete_config(db, admin.id, config_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/provider-configs/{config_id}/register-ipn",
    response_model=ProviderConfigResponse,
    summary="[Admin] Register the provider IPN for a configuration",
)
async def admin_register_ipn(
    config_id: uuid.UUID,
    request: IpnRegistrationRequest | None = None,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    http_client: httpx.AsyncClient = Depends(get_http_client),
):
    """
    Ask the provider for an IPN id for our webhook URL and store it on the
    configuration. Pesapal orders are refused until this has been done.
    """
    url = str(request.url) if request and request.url else None
    return await provider_config_service.admin_register_ipn(
        db, http_client, admin.id, config_id, url=url
    )


@router.get(
    "/audit-logs",
    response_model=list[AuditLogResponse],
    summary="[Admin] Recent configuration audit entries",
)
async def admin_list_audit_logs(
    limit: int = Query(100, ge=1, le=500),
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await provider_config_service.admin_list_audit_logs(db, limit=limit)


# ---------------------------------------------------------------------------
# Transaction visibility
# ---------------------------------------------------------------------------

@router.get(
    "/transactions",
    response_model=list[TransactionResponse],
    summary="[Admin] List all transactions",
)
async def admin_list_all_transactions(
    status: str | None = Query(None, pattern="^(pending|completed|failed)$"),
    provider: str | None = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await transaction_service.admin_get_all_transactions(
        db, status=status, provider=provider, limit=limit, offset=offset
    )


@router.get(
    "/transactions/{transaction_id}",
    response_model=TransactionResponse,
    summary="[Admin] Get any transaction by ID",
)
async def admin_get_transaction(
    transaction_id: uuid.UUID,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Get any transaction without ownership check."""
    return await transaction_service.admin_get_transaction(db, transaction_id)
