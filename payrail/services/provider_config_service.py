"""
Provider configuration service — credential lookup and admin CRUD.

Two audiences:

  1. Routing / reconciliation call get_credentials() to obtain decrypted
     credentials for the single active config of (provider, country). No
     active config → ProviderConfigNotFoundError. The rail fails closed and
     never falls back to another country's credentials (except where the
     registry declares a config country, as for Pesepay).

  2. Admin endpoints create, update, delete and list configs, and register
     the provider IPN for a config (the provider-assigned id lands in
     ipn_id). Every mutation writes an AdminAuditLog row in the same
     database transaction. Responses never include consumer secrets; the
     schema layer only exposes whether one is set.

Admin functions are prefixed with `admin_`.
"""

import uuid

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payrail.config import settings
from payrail.exceptions import DuplicateConfigError, ProviderConfigNotFoundError
from payrail.logging_config import get_logger
from payrail.models.audit_log import AdminAuditLog
from payrail.models.provider_config import ProviderConfig
from payrail.providers.base import ProviderCredentials
from payrail.providers.factory import get_adapter
from payrail.providers.registry import (
    Provider,
    config_country_for,
    normalize_country,
    webhook_slug,
)
from payrail.security import decrypt_value, encrypt_value


logger = get_logger(__name__)

ENTITY_TYPE = "provider_config"


# ---------------------------------------------------------------------------
# Credential lookup
# ---------------------------------------------------------------------------

async def get_active_config(
    db: AsyncSession,
    provider: Provider | str,
    country_code: str,
) -> ProviderConfig | None:
    result = await db.execute(
        select(ProviderConfig).where(
            ProviderConfig.provider == Provider(provider).value,
            ProviderConfig.country_code == normalize_country(country_code),
            ProviderConfig.is_active.is_(True),
        )
    )
    return result.scalars().first()


async def get_credentials(
    db: AsyncSession,
    provider: Provider | str,
    country_code: str,
) -> ProviderCredentials:
    """
    Decrypted credentials for the rail serving `country_code`.

    Raises:
        ProviderConfigNotFoundError: No active configuration exists.
    """
    provider = Provider(provider)
    config_country = config_country_for(provider, country_code)
    config = await get_active_config(db, provider, config_country)
    if config is None:
        logger.warning(
            "provider_config_missing",
            provider=provider.value,
            country_code=config_country,
        )
        raise ProviderConfigNotFoundError(
            f"{provider.value} is not configured for {config_country}"
        )
    return credentials_from_config(config)


def credentials_from_config(config: ProviderConfig) -> ProviderCredentials:
    return ProviderCredentials(
        provider=config.provider,
        country_code=config.country_code,
        environment=config.environment,
        consumer_key=config.consumer_key,
        consumer_secret=decrypt_value(config.consumer_secret_encrypted),
        ipn_id=config.ipn_id,
        options=dict(config.options or {}),
    )


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------

async def record_audit(
    db: AsyncSession,
    admin_user_id: uuid.UUID,
    action: str,
    entity_id: uuid.UUID | None,
    details: dict,
) -> AdminAuditLog:
    entry = AdminAuditLog(
        admin_user_id=admin_user_id,
        action=action,
        entity_type=ENTITY_TYPE,
        entity_id=entity_id,
        details=details,
    )
    db.add(entry)
    await db.flush()
    return entry


def _audit_details(config: ProviderConfig) -> dict:
    return {
        "provider": config.provider,
        "country_code": config.country_code,
        "environment": config.environment,
        "is_active": config.is_active,
    }


# ---------------------------------------------------------------------------
# Admin CRUD
# ---------------------------------------------------------------------------

async def _ensure_single_active(
    db: AsyncSession,
    provider: str,
    country_code: str,
    exclude_id: uuid.UUID | None = None,
) -> None:
    query = select(ProviderConfig.id).where(
        ProviderConfig.provider == provider,
        ProviderConfig.country_code == country_code,
        ProviderConfig.is_active.is_(True),
    )
    if exclude_id is not None:
        query = query.where(ProviderConfig.id != exclude_id)
    result = await db.execute(query)
    if result.first() is not None:
        raise DuplicateConfigError(provider, country_code)


async def admin_list_configs(
    db: AsyncSession,
    country_code: str | None = None,
    provider: str | None = None,
) -> list[ProviderConfig]:
    query = select(ProviderConfig).order_by(
        ProviderConfig.provider, ProviderConfig.country_code, ProviderConfig.created_at
    )
    if country_code:
        query = query.where(ProviderConfig.country_code == normalize_country(country_code))
    if provider:
        query = query.where(ProviderConfig.provider == provider)
    result = await db.execute(query)
    return list(result.scalars().all())


async def admin_get_config(db: AsyncSession, config_id: uuid.UUID) -> ProviderConfig:
    result = await db.execute(select(ProviderConfig).where(ProviderConfig.id == config_id))
    config = result.scalar_one_or_none()
    if config is None:
        raise ProviderConfigNotFoundError(f"Provider config {config_id} not found")
    return config


async def admin_create_config(
    db: AsyncSession,
    admin_user_id: uuid.UUID,
    provider: Provider,
    country_code: str,
    environment: str,
    consumer_key: str,
    consumer_secret: str,
    ipn_id: str | None = None,
    options: dict | None = None,
    is_active: bool = True,
) -> ProviderConfig:
    """
    Raises:
        DuplicateConfigError: An active config already exists and this one
            would be active too.
    """
    country_code = normalize_country(country_code)
    provider_value = Provider(provider).value
    if is_active:
        await _ensure_single_active(db, provider_value, country_code)

    config = ProviderConfig(
        provider=provider_value,
        country_code=country_code,
        environment=environment,
        consumer_key=consumer_key,
        consumer_secret_encrypted=encrypt_value(consumer_secret),
        ipn_id=ipn_id,
        options=options or {},
        is_active=is_active,
    )
    db.add(config)
    await db.flush()

    await record_audit(db, admin_user_id, "create_provider_config", config.id, _audit_details(config))
    logger.info(
        "provider_config_created",
        config_id=str(config.id),
        provider=provider_value,
        country_code=country_code,
        admin_user_id=str(admin_user_id),
    )
    return config


async def admin_update_config(
    db: AsyncSession,
    admin_user_id: uuid.UUID,
    config_id: uuid.UUID,
    changes: dict,
) -> ProviderConfig:
    """
    Apply a partial update. `consumer_secret`, when present, is re-encrypted.

    The audit row lists the names of the changed fields, never their values
    for credentials.
    """
    config = await admin_get_config(db, config_id)

    becomes_active = changes.get("is_active", config.is_active)
    if becomes_active:
        await _ensure_single_active(db, config.provider, config.country_code, exclude_id=config.id)

    changed_fields = []
    for field_name, value in changes.items():
        if field_name == "consumer_secret":
            config.consumer_secret_encrypted = encrypt_value(value)
        else:
            setattr(config, field_name, value)
        changed_fields.append(field_name)
    await db.flush()

    details = _audit_details(config)
    details["changed_fields"] = sorted(changed_fields)
    await record_audit(db, admin_user_id, "update_provider_config", config.id, details)
    logger.info(
        "provider_config_updated",
        config_id=str(config.id),
        changed_fields=sorted(changed_fields),
        admin_user_id=str(admin_user_id),
    )
    return config


async def admin_delete_config(
    db: AsyncSession,
    admin_user_id: uuid.UUID,
    config_id: uuid.UUID,
) -> None:
    config = await admin_get_config(db, config_id)
    details = _audit_details(config)
    await db.delete(config)
    await db.flush()
    await record_audit(db, admin_user_id, "delete_provider_config", config_id, details)
    logger.info(
        "provider_config_deleted",
        config_id=str(config_id),
        admin_user_id=str(admin_user_id),
    )


async def admin_list_audit_logs(
    db: AsyncSession,
    limit: int = 100,
) -> list[AdminAuditLog]:
    result = await db.execute(
        select(AdminAuditLog).order_by(AdminAuditLog.created_at.desc()).limit(limit)
    )
    return list(result.scalars().all())


async def admin_register_ipn(
    db: AsyncSession,
    http_client: httpx.AsyncClient,
    admin_user_id: uuid.UUID,
    config_id: uuid.UUID,
    url: str | None = None,
) -> ProviderConfig:
    """
    Register our webhook endpoint with the provider and store the IPN id.

    `url` defaults to this deployment's webhook route for the provider.

    Raises:
        ProviderConfigNotFoundError: Unknown config id.
        InvalidInputError: The provider has no IPN registration.
        ProviderUnavailableError: The provider refused or did not answer.
            Nothing on the config changes.
    """
    config = await admin_get_config(db, config_id)
    provider = Provider(config.provider)
    url = url or f"{settings.PUBLIC_API_URL}/webhooks/{webhook_slug(provider)}"

    adapter = get_adapter(provider, http_client)
    registration = await adapter.register_ipn(url, credentials_from_config(config))

    previous_ipn_id = config.ipn_id
    config.ipn_id = registration.ipn_id
    await db.flush()

    details = _audit_details(config)
    details.update(
        {
            "changed_fields": ["ipn_id"],
            "ipn_id": registration.ipn_id,
            "previous_ipn_id": previous_ipn_id,
            "url": registration.url,
        }
    )
    await record_audit(db, admin_user_id, "register_ipn", config.id, details)
    logger.info(
        "provider_ipn_registered",
        config_id=str(config.id),
        provider=config.provider,
        country_code=config.country_code,
        ipn_id=registration.ipn_id,
        admin_user_id=str(admin_user_id),
    )
    return config
