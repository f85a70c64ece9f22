"""
Test fixtures for the Payrail test suite.

This module provides shared fixtures used across all test files:

  - db_engine / db_session: Fresh in-memory SQLite database for each test
  - provider_stub: Fake provider APIs served through httpx.MockTransport
  - client: Async HTTP test client (unauthenticated) wired to both
  - register_merchant: Signs a merchant up and returns its auth headers
  - admin_headers: Auth headers for an ADMIN user
  - provider_configs: One active ProviderConfig per rail used in tests
  - set_balance: Put money on a merchant balance without a payment

Key design decisions:
  - No test ever reaches a real provider. Every outbound call goes through
    provider_stub, which records requests and answers with canned bodies.
    An unstubbed URL answers 404, which adapters surface as a 502.
  - The get_db override mirrors production: domain errors commit, anything
    else rolls back.
  - Merchants are created through the real signup endpoint; admins are
    promoted directly in the database, as an operator would.
"""

import json
import os

os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
# base64 of 32 bytes; a valid Fernet key
os.environ.setdefault("CONFIG_ENCRYPTION_KEY", "YWFh" * 10 + "YWE=")
os.environ.setdefault("PAYSTACK_WEBHOOK_SECRET", "paystack-test-secret")
os.environ.setdefault("PESAPAL_IPN_SECRET", "pesapal-test-secret")
os.environ.setdefault("PESEPAY_WEBHOOK_SECRET", "pesepay-test-secret")
os.environ.setdefault("MTN_MOMO_CALLBACK_SECRET", "momo-test-secret")
os.environ.setdefault("PAYMENTOLOGY_WEBHOOK_SECRET", "paymentology-test-secret")

import uuid
from decimal import Decimal

import httpx
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import update
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from payrail.database import Base, get_db
from payrail.dependencies import get_http_client
from payrail.exceptions import PayrailError
from payrail.main import app
from payrail.models.merchant_profile import MerchantProfile
from payrail.models.provider_config import ProviderConfig
from payrail.models.user import User, UserType
from payrail.security import encrypt_value


# In-memory SQLite for fast, isolated tests
TEST_DATABASE_URL = "sqlite+aiosqlite://"

PESEPAY_ENCRYPTION_KEY = "0123456789abcdef0123456789abcdef"
MERCHANT_WEBHOOK_URL = "https://merchant.example.com/hooks/payrail"


class ProviderStub:
    """
    Canned responses for outbound HTTP, keyed by method and URL (no query).

    Responses are built per request so the same route can be hit repeatedly.
    """

    def __init__(self):
        self.routes = {}
        self.requests: list[httpx.Request] = []

    def add(self, method, url, *, json=None, status_code=200, text=None, handler=None):
        if handler is None:
            def handler(request):
                if text is not None:
                    return httpx.Response(status_code, text=text)
                return httpx.Response(status_code, json=json)
        self.routes[(method.upper(), url)] = handler

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = f"{request.url.scheme}://{request.url.host}{request.url.path}"
        handler = self.routes.get((request.method, url))
        if handler is None:
            return httpx.Response(404, json={"message": f"no stub for {url}"})
        return handler(request)

    def calls(self, url_fragment: str) -> list[httpx.Request]:
        return [request for request in self.requests if url_fragment in str(request.url)]


@pytest.fixture
def provider_stub():
    return ProviderStub()


@pytest_asyncio.fixture
async def db_engine():
    """Create a fresh async engine with all tables for each test."""
    engine = create_async_engine(TEST_DATABASE_URL)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory):
    """Provide an async session bound to the test engine."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def http_client(provider_stub):
    async with httpx.AsyncClient(transport=httpx.MockTransport(provider_stub.handle)) as client:
        yield client


@pytest_asyncio.fixture
async def client(session_factory, provider_stub):
    """
    Async HTTP test client with the test database and provider stub injected.
    """

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except PayrailError:
                await session.commit()
                raise
            except Exception:
                await session.rollback()
                raise

    async def override_get_http_client():
        async with httpx.AsyncClient(
            transport=httpx.MockTransport(provider_stub.handle)
        ) as outbound:
            yield outbound

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_http_client] = override_get_http_client

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def register_merchant(client):
    """
    Factory: sign a merchant up through the real endpoint.

    Returns {"headers": ..., "user_id": ...}.
    """

    async def _register(email, country="KE", currency="KES", password="SecurePass123!"):
        response = await client.post(
            "/auth/signup",
            json={
                "email": email,
                "password": password,
                "full_name": email.split("@")[0].title(),
                "country": country,
                "currency": currency,
            },
        )
        assert response.status_code == 201, f"Signup failed: {response.text}"
        data = response.json()
        return {
            "headers": {"Authorization": f"Bearer {data['token']}"},
            "user_id": uuid.UUID(data["user_id"]),
        }

    return _register


@pytest_asyncio.fixture
async def ke_merchant(register_merchant):
    return await register_merchant("kenya@example.com", country="KE", currency="KES")


@pytest_asyncio.fixture
async def ng_merchant(register_merchant):
    return await register_merchant("nigeria@example.com", country="NG", currency="NGN")


@pytest_asyncio.fixture
async def zw_merchant(register_merchant):
    return await register_merchant("zimbabwe@example.com", country="ZW", currency="USD")


@pytest_asyncio.fixture
async def gh_merchant(register_merchant):
    return await register_merchant("ghana@example.com", country="GH", currency="GHS")


@pytest_asyncio.fixture
async def za_merchant(register_merchant):
    return await register_merchant("southafrica@example.com", country="ZA", currency="ZAR")


@pytest_asyncio.fixture
async def admin_headers(client, session_factory):
    """
    Auth headers for an ADMIN user.

    Signs up normally, then updates user_type in the database. Admin
    accounts are provisioned by an operator, never self-service.
    """
    signup_response = await client.post(
        "/auth/signup",
        json={
            "email": "admin@example.com",
            "password": "AdminPass123!",
            "full_name": "Platform Admin",
            "country": "KE",
            "currency": "KES",
        },
    )
    assert signup_response.status_code == 201
    user_id = uuid.UUID(signup_response.json()["user_id"])

    async with session_factory() as session:
        await session.execute(
            update(User)
            .where(User.id == user_id)
            .values(user_type=UserType.ADMIN)
        )
        await session.commit()

    login_response = await client.post(
        "/auth/login",
        json={"email": "admin@example.com", "password": "AdminPass123!"},
    )
    return {"Authorization": f"Bearer {login_response.json()['token']}"}


STANDARD_CONFIGS = [
    {
        "provider": "pesapal",
        "country_code": "KE",
        "consumer_key": "pesapal-key-1234",
        "consumer_secret": "pesapal-secret-5678",
        "ipn_id": "ipn-ke-1",
    },
    {
        "provider": "paystack",
        "country_code": "NG",
        "consumer_key": "pk_test_paystack",
        "consumer_secret": "sk_test_paystack",
    },
    {
        "provider": "pesepay",
        "country_code": "ZW",
        "consumer_key": "pesepay-integration-key",
        "consumer_secret": PESEPAY_ENCRYPTION_KEY,
    },
    {
        "provider": "mtn_momo",
        "country_code": "GH",
        "consumer_key": "momo-api-user",
        "consumer_secret": "momo-api-key",
    },
    {
        "provider": "paymentology",
        "country_code": "ZA",
        "consumer_key": "TERM001",
        "consumer_secret": "termpass",
        "options": {"campaign_uuid": "camp-1"},
    },
]


@pytest_asyncio.fixture
async def provider_configs(session_factory):
    """Active sandbox configuration for every rail the tests exercise."""
    async with session_factory() as session:
        for entry in STANDARD_CONFIGS:
            session.add(
                ProviderConfig(
                    provider=entry["provider"],
                    country_code=entry["country_code"],
                    environment="sandbox",
                    consumer_key=entry["consumer_key"],
                    consumer_secret_encrypted=encrypt_value(entry["consumer_secret"]),
                    ipn_id=entry.get("ipn_id"),
                    options=entry.get("options", {}),
                    is_active=True,
                )
            )
        await session.commit()
    return STANDARD_CONFIGS


@pytest.fixture
def set_balance(session_factory):
    async def _set(user_id, amount):
        async with session_factory() as session:
            await session.execute(
                update(MerchantProfile)
                .where(MerchantProfile.user_id == user_id)
                .values(balance=Decimal(amount))
            )
            await session.commit()

    return _set


@pytest.fixture
def get_balance(client):
    async def _get(merchant):
        response = await client.get("/merchants/me", headers=merchant["headers"])
        assert response.status_code == 200
        return Decimal(response.json()["balance"])

    return _get


# ---------------------------------------------------------------------------
# Provider checkout stubs shared by the payment and webhook tests
# ---------------------------------------------------------------------------

PESAPAL_SANDBOX = "https://cybqa.pesapal.com/pesapalv3"
PAYSTACK_API = "https://api.paystack.co"


@pytest.fixture
def stub_pesapal_checkout(provider_stub):
    def _stub(tracking_id="otid-100"):
        provider_stub.add("POST", f"{PESAPAL_SANDBOX}/api/Auth/RequestToken", json={"token": "tok"})
        provider_stub.add(
            "POST",
            f"{PESAPAL_SANDBOX}/api/Transactions/SubmitOrderRequest",
            json={
                "order_tracking_id": tracking_id,
                "merchant_reference": "m-ref",
                "redirect_url": f"https://cybqa.pesapal.com/iframe/{tracking_id}",
            },
        )

    return _stub


@pytest.fixture
def stub_paystack_checkout(provider_stub):
    """Paystack initialize that echoes back the reference it was given."""

    def initialize(request):
        reference = json.loads(request.content)["reference"]
        return httpx.Response(
            200,
            json={
                "status": True,
                "data": {
                    "authorization_url": f"https://checkout.paystack.com/{reference}",
                    "access_code": "ac",
                    "reference": reference,
                },
            },
        )

    def _stub():
        provider_stub.add("POST", f"{PAYSTACK_API}/transaction/initialize", handler=initialize)

    return _stub
