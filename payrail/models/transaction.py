"""
Transaction model — one row per payment or withdrawal.

Key fields:
  - type: "payment" (money in) or "withdrawal" (money out)
  - amount: Decimal, always positive; the direction is implied by type
  - status: "pending" → "completed" | "failed". Terminal states are final
  - provider + reference: the provider's tracking id. Unique per provider and
    used as the idempotency key for notifications
  - metadata: open JSON map for provider diagnostics, redirect URLs, payer
    details and fee split. Reconciliation merges into it, never replaces it
  - completed_at: set exactly once, on the transition to completed

After creation a transaction is only mutated by the reconciliation service,
and it is never deleted.
"""

import enum
import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from payrail.database import Base


class TransactionType(str, enum.Enum):
    PAYMENT = "payment"
    WITHDRAWAL = "withdrawal"


class TransactionStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset(
    {TransactionStatus.COMPLETED.value, TransactionStatus.FAILED.value}
)


class Transaction(Base):
    __tablename__ = "transactions"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_transactions_positive_amount"),
        CheckConstraint(
            "status IN ('pending', 'completed', 'failed')",
            name="ck_transactions_status",
        ),
        UniqueConstraint("provider", "reference", name="uq_transactions_provider_reference"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id"),
        nullable=False,
        index=True,
    )

    type: Mapped[str] = mapped_column(String(20), nullable=False)

    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    status: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        default=TransactionStatus.PENDING.value,
        index=True,
    )

    payment_method: Mapped[str] = mapped_column(String(20), nullable=False)
    provider: Mapped[str] = mapped_column(String(20), nullable=False)

    # NULL until the provider assigns one at initiation
    reference: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)

    description: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # "metadata" is reserved on declarative classes
    metadata_: Mapped[dict] = mapped_column("metadata", JSON, default=dict, nullable=False)

    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
