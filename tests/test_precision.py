"""
Tests for monetary precision: Decimal end to end, never float.

Amounts arrive as strings, are validated to two decimal places, stored as
NUMERIC(14, 2), serialized back as strings, and converted to integer minor
units only at the provider edge (Paystack kobo).

Tests verify:
  - Small amounts add up exactly (0.10 + 0.20 == 0.30)
  - More than two decimal places is rejected, not rounded
  - Minor-unit conversion is exact at both ends of the range
  - Fees are rounded half up to the cent
"""

import hashlib
import hmac
import json
from decimal import Decimal

import pytest

from payrail.providers.paystack import PaystackAdapter
from payrail.services.withdrawal_service import calculate_fee


PAYMENT = {
    "payment_method": "card",
    "customer_name": "Ngozi Adeyemi",
    "customer_email": "ngozi@example.com",
}


async def pay_and_confirm(client, merchant, amount):
    response = await client.post(
        "/payments", json={**PAYMENT, "amount": amount}, headers=merchant["headers"]
    )
    assert response.status_code == 201, response.text
    reference = response.json()["transaction"]["reference"]

    body = json.dumps(
        {"event": "charge.success", "data": {"reference": reference, "status": "success"}}
    ).encode()
    signature = hmac.new(b"paystack-test-secret", body, hashlib.sha512).hexdigest()
    confirmed = await client.post(
        "/webhooks/paystack",
        content=body,
        headers={"x-paystack-signature": signature, "content-type": "application/json"},
    )
    assert confirmed.json()["outcome"] == "applied"


class TestDecimalPrecision:

    async def test_small_amounts_sum_exactly(
        self, client, ng_merchant, provider_configs, provider_stub, stub_paystack_checkout
    ):
        stub_paystack_checkout()
        await pay_and_confirm(client, ng_merchant, "0.10")
        await pay_and_confirm(client, ng_merchant, "0.20")

        profile = await client.get("/merchants/me", headers=ng_merchant["headers"])
        # String, not float, and exactly 0.30
        assert profile.json()["balance"] == "0.30"

    async def test_many_small_payments_do_not_drift(
        self, client, ng_merchant, provider_configs, provider_stub, stub_paystack_checkout,
        get_balance,
    ):
        stub_paystack_checkout()
        for _ in range(10):
            await pay_and_confirm(client, ng_merchant, "0.01")
        assert await get_balance(ng_merchant) == Decimal("0.10")

    async def test_amounts_are_strings_in_responses(
        self, client, ng_merchant, provider_configs, provider_stub, stub_paystack_checkout
    ):
        stub_paystack_checkout()
        response = await client.post(
            "/payments", json={**PAYMENT, "amount": "19.99"}, headers=ng_merchant["headers"]
        )
        assert response.json()["transaction"]["amount"] == "19.99"

    @pytest.mark.parametrize("amount", ["10.001", "0.005", "1" * 15])
    async def test_too_precise_or_too_large_is_rejected(
        self, client, ng_merchant, provider_configs, provider_stub, amount
    ):
        response = await client.post(
            "/payments", json={**PAYMENT, "amount": amount}, headers=ng_merchant["headers"]
        )
        assert response.status_code == 422
        assert provider_stub.requests == []

    async def test_withdrawal_amount_precision(self, client, gh_merchant):
        response = await client.post(
            "/withdrawals", json={"amount": "1.234"}, headers=gh_merchant["headers"]
        )
        assert response.status_code == 422


class TestMinorUnits:

    @pytest.mark.parametrize(
        "amount, kobo",
        [
            ("0.01", 1),
            ("0.10", 10),
            ("19.99", 1999),
            ("999999999999.99", 99999999999999),
        ],
    )
    def test_paystack_kobo_conversion(self, amount, kobo):
        converted = PaystackAdapter(http_client=None).to_provider_amount(Decimal(amount))
        assert converted == kobo
        assert isinstance(converted, int)


class TestFeeRounding:

    @pytest.mark.parametrize(
        "amount, plan, fee",
        [
            ("0.10", None, "0.01"),       # 0.005 rounds half up
            ("0.09", None, "0.00"),       # 0.0045 rounds down
            ("0.50", "business", "0.01"),  # 0.005 rounds half up
            ("1234.56", "professional", "24.69"),
        ],
    )
    def test_fee_is_quantized_to_cents(self, amount, plan, fee):
        assert calculate_fee(Decimal(amount), plan) == Decimal(fee)
