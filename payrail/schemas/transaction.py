"""
Pydantic schemas for payments, withdrawals and transaction history.

Monetary amounts are decimals with two places and serialize as strings
(e.g. "150.00") so no client ever sees a binary float.
"""

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import AliasChoices, BaseModel, EmailStr, Field, HttpUrl

from payrail.providers.registry import PaymentMethod


class TransactionResponse(BaseModel):
    id: uuid.UUID
    type: str
    amount: Decimal
    currency: str
    status: str
    payment_method: str
    provider: str
    reference: str | None
    description: str | None
    metadata: dict = Field(
        default_factory=dict,
        validation_alias=AliasChoices("metadata_", "metadata"),
    )
    completed_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}


class PaymentCreateRequest(BaseModel):
    """Request body for POST /payments."""
    amount: Decimal = Field(gt=0, max_digits=14, decimal_places=2)
    payment_method: PaymentMethod
    # Defaults to the merchant currency; any other value is rejected
    currency: str | None = Field(None, pattern=r"^[A-Za-z]{3}$")
    customer_name: str = Field(min_length=1, max_length=100)
    customer_email: EmailStr
    customer_phone: str | None = Field(None, max_length=20)
    description: str | None = Field(None, max_length=255)
    webhook_url: HttpUrl | None = None
    success_url: HttpUrl | None = None


class PaymentCreateResponse(BaseModel):
    transaction: TransactionResponse
    redirect_url: str | None
    instructions: str | None = None


class WithdrawalCreateRequest(BaseModel):
    """Request body for POST /withdrawals."""
    amount: Decimal = Field(gt=0, max_digits=14, decimal_places=2)
    description: str | None = Field(None, max_length=255)


class VirtualCardResponse(BaseModel):
    """Issued card details. Shown once, never stored."""
    number: str
    expiry: str | None
    cvv: str | None
    last4: str


class WithdrawalCreateResponse(BaseModel):
    transaction: TransactionResponse
    fee: Decimal
    instructions: str | None = None
    virtual_card: VirtualCardResponse | None = None


class WithdrawalRouteResponse(BaseModel):
    provider: str
    display_name: str
    processing_time: str
    is_instant: bool
    supported: bool
    account_type: str | None
    fee_rate: Decimal


class StatusCheckRequest(BaseModel):
    """Request body for POST /transactions/check-status."""
    transaction_id: uuid.UUID


class StatusCheckResponse(BaseModel):
    transaction: TransactionResponse
    outcome: str
    previous_status: str
