"""
ProviderConfig model — per-country credentials for one provider.

Routing looks up the single active row for (provider, country_code). No row
means the rail is not configured and the request fails closed.

consumer_secret is Fernet-encrypted at rest and is never returned by any API
response. `options` holds non-secret provider settings such as the MTN MoMo
target environment or the Paymentology campaign id.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, DateTime, LargeBinary, String
from sqlalchemy.orm import Mapped, mapped_column

from payrail.database import Base


class ProviderConfig(Base):
    __tablename__ = "provider_configs"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )

    provider: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    country_code: Mapped[str] = mapped_column(String(2), nullable=False, index=True)

    # "sandbox" or "production"
    environment: Mapped[str] = mapped_column(String(20), nullable=False, default="sandbox")

    consumer_key: Mapped[str] = mapped_column(String(255), nullable=False)
    consumer_secret_encrypted: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)

    # Provider-assigned notification channel id (Pesapal IPN id)
    ipn_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    options: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
