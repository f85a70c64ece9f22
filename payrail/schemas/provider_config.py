"""
Pydantic schemas for admin provider configuration endpoints.

consumer_secret is write-only: it is accepted on create/update and never
appears in any response. The consumer key is masked to its last four
characters.
"""

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, HttpUrl, field_serializer, field_validator

from payrail.providers.registry import Provider


class ProviderConfigCreateRequest(BaseModel):
    provider: Provider
    country_code: str = Field(pattern=r"^[A-Za-z]{2}$")
    environment: Literal["sandbox", "production"] = "sandbox"
    consumer_key: str = Field(min_length=1, max_length=255)
    consumer_secret: str = Field(min_length=1)
    ipn_id: str | None = Field(None, max_length=100)
    options: dict = Field(default_factory=dict)
    is_active: bool = True

    @field_validator("provider")
    @classmethod
    def not_manual(cls, value: Provider) -> Provider:
        if value == Provider.MANUAL:
            raise ValueError("manual has no configuration")
        return value


class ProviderConfigUpdateRequest(BaseModel):
    """Partial update: only fields that are sent are changed."""
    environment: Literal["sandbox", "production"] | None = None
    consumer_key: str | None = Field(None, min_length=1, max_length=255)
    consumer_secret: str | None = Field(None, min_length=1)
    ipn_id: str | None = Field(None, max_length=100)
    options: dict | None = None
    is_active: bool | None = None


class IpnRegistrationRequest(BaseModel):
    # Defaults to this deployment's webhook route for the provider
    url: HttpUrl | None = None


class ProviderConfigResponse(BaseModel):
    id: uuid.UUID
    provider: str
    country_code: str
    environment: str
    consumer_key: str
    ipn_id: str | None
    options: dict
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @field_serializer("consumer_key")
    def mask_consumer_key(self, value: str) -> str:
        if len(value) <= 4:
            return "****"
        return f"****{value[-4:]}"


class AuditLogResponse(BaseModel):
    id: uuid.UUID
    admin_user_id: uuid.UUID
    action: str
    entity_type: str
    entity_id: uuid.UUID | None
    details: dict
    created_at: datetime

    model_config = {"from_attributes": True}
