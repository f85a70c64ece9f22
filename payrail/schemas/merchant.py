"""
Pydantic schemas for the merchant profile and withdrawal account.

Bank account and mobile numbers are returned to their owner only; admin
endpoints never expose profiles.
"""

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field, model_validator

from payrail.providers.registry import PaymentMethod, WithdrawalAccountType


class MerchantProfileResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    full_name: str
    email: str
    phone: str | None
    country: str
    currency: str
    balance: Decimal
    plan: str
    withdrawal_account_type: str | None
    mobile_provider: str | None
    mobile_number: str | None
    bank_name: str | None
    bank_account_number: str | None
    bank_account_name: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class WithdrawalAccountRequest(BaseModel):
    """Request body for PUT /merchants/me/withdrawal-account."""
    account_type: WithdrawalAccountType
    mobile_provider: str | None = Field(None, max_length=50)
    mobile_number: str | None = Field(None, pattern=r"^\+?[0-9]{7,15}$")
    bank_name: str | None = Field(None, max_length=100)
    bank_account_number: str | None = Field(None, max_length=50)
    bank_account_name: str | None = Field(None, max_length=200)

    @model_validator(mode="after")
    def destination_fields_present(self):
        if self.account_type == WithdrawalAccountType.MOBILE and not self.mobile_number:
            raise ValueError("mobile_number is required for mobile accounts")
        if self.account_type == WithdrawalAccountType.BANK and not (
            self.bank_account_number and self.bank_account_name
        ):
            raise ValueError("bank_account_number and bank_account_name are required")
        return self


class PaymentMethodsResponse(BaseModel):
    country: str
    methods: list[PaymentMethod]
