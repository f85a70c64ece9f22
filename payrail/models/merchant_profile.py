"""
MerchantProfile model — the business behind a user account.

`country` drives payment routing, `currency` is the balance currency, and
`plan` picks the withdrawal fee tier. The withdrawal account fields describe
where money goes when the merchant withdraws: a mobile wallet
(mobile_provider + mobile_number) or a bank account.

Balance rules:
  - Stored as Numeric(14, 2), never negative (CHECK constraint)
  - Credited only when a payment transaction transitions to completed
  - Debited by withdrawal initiation (amount + fee) with a conditional UPDATE
  - Refunded only when a withdrawal transitions to failed

Nothing else writes to `balance`.
"""

import enum
import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import String, DateTime, ForeignKey, Numeric, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payrail.database import Base


class MerchantPlan(str, enum.Enum):
    FREE = "free"
    PROFESSIONAL = "professional"
    BUSINESS = "business"


class MerchantProfile(Base):
    __tablename__ = "merchant_profiles"

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_merchant_profiles_non_negative_balance"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id"),
        unique=True,
        nullable=False,
    )

    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # ISO 3166 alpha-2, stored upper-case
    country: Mapped[str] = mapped_column(String(2), nullable=False)
    # ISO 4217
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    balance: Mapped[Decimal] = mapped_column(
        Numeric(14, 2),
        default=Decimal("0.00"),
        nullable=False,
    )

    plan: Mapped[str] = mapped_column(
        String(20),
        default=MerchantPlan.FREE.value,
        nullable=False,
    )

    # "mobile" or "bank"; NULL until the merchant sets up withdrawals
    withdrawal_account_type: Mapped[str | None] = mapped_column(String(10), nullable=True)
    mobile_provider: Mapped[str | None] = mapped_column(String(50), nullable=True)
    mobile_number: Mapped[str | None] = mapped_column(String(20), nullable=True)
    bank_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    bank_account_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    bank_account_name: Mapped[str | None] = mapped_column(String(200), nullable=True)

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

    user: Mapped["User"] = relationship(back_populates="merchant_profile")
