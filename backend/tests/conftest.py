"""
Test configuration and fixtures for SharksZone Billing.

Provides an in-memory database, a fake PayPal API served through
httpx.MockTransport, and an ASGI client wired to both.
"""

import os
import time

# Settings are read at import time; set the required values first.
os.environ.setdefault("SUPABASE_URL", "https://sharkszone-test.supabase.co")
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-jwt-secret-with-enough-bytes-for-hs256")
os.environ.setdefault("ENVIRONMENT", "testing")

import httpx
import jwt
import pytest
from typing import AsyncGenerator, Optional
from unittest.mock import patch

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

from sharkszone.config.paypal import PAYPAL_BASE_URLS, PayPalConfig, PayPalCredentials
from sharkszone.config.settings import get_settings
from sharkszone.infrastructure.db.models import DEFAULT_PLANS, UserSubscription, utcnow
from sharkszone.infrastructure.db.repositories import PlanRepository
from sharkszone.infrastructure.payments import PayPalClient


USER_ID = "00000000-0000-4000-8000-00000000aaaa"
OTHER_USER_ID = "00000000-0000-4000-8000-00000000bbbb"


# =============================================================================
# Fake PayPal
# =============================================================================

class FakePayPal:
    """In-memory stand-in for the PayPal REST endpoints the client uses."""

    def __init__(self):
        self.subscriptions: dict[str, str] = {}
        self.order_status = "COMPLETED"
        self.order_amount = "4.00"
        self.verification_status = "SUCCESS"
        self.cancel_error: Optional[tuple[int, dict]] = None
        self.raise_on: dict[str, Exception] = {}
        self.requests: list[httpx.Request] = []

    def calls(self, path_fragment: str) -> list[httpx.Request]:
        return [r for r in self.requests if path_fragment in r.url.path]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        for fragment, error in self.raise_on.items():
            if fragment in path:
                raise error

        if path == "/v1/oauth2/token":
            return httpx.Response(
                200,
                json={"access_token": "A21AA-test-token", "token_type": "Bearer", "expires_in": 32400},
            )

        if path == "/v1/notifications/verify-webhook-signature":
            return httpx.Response(200, json={"verification_status": self.verification_status})

        parts = path.split("/")
        if path.startswith("/v1/billing/subscriptions/"):
            subscription_id = parts[4]
            if subscription_id not in self.subscriptions:
                return httpx.Response(
                    404,
                    json={
                        "name": "RESOURCE_NOT_FOUND",
                        "message": "The specified resource does not exist.",
                        "debug_id": "dbg404",
                    },
                )
            if path.endswith("/cancel"):
                if self.cancel_error:
                    status, body = self.cancel_error
                    return httpx.Response(status, json=body)
                self.subscriptions[subscription_id] = "CANCELLED"
                return httpx.Response(204)
            return httpx.Response(
                200,
                json={"id": subscription_id, "status": self.subscriptions[subscription_id], "plan_id": "P-PRO"},
            )

        if path.startswith("/v2/checkout/orders/") and path.endswith("/capture"):
            order_id = parts[4]
            return httpx.Response(
                201,
                json={
                    "id": order_id,
                    "status": self.order_status,
                    "purchase_units": [{
                        "custom_id": USER_ID,
                        "payments": {"captures": [{
                            "id": f"CAP-{order_id}",
                            "status": "COMPLETED",
                            "amount": {"currency_code": "USD", "value": self.order_amount},
                        }]},
                    }],
                },
            )

        if path.startswith("/v2/payments/authorizations/") and path.endswith("/capture"):
            return httpx.Response(
                201,
                json={
                    "id": f"CAP-{parts[4]}",
                    "status": self.order_status,
                    "amount": {"currency_code": "USD", "value": self.order_amount},
                },
            )

        return httpx.Response(404, json={"name": "NOT_FOUND", "message": "Unknown path"})


@pytest.fixture
def fake_paypal() -> FakePayPal:
    return FakePayPal()


@pytest.fixture
def paypal_config() -> PayPalConfig:
    return PayPalConfig(
        mode="sandbox",
        base_url=PAYPAL_BASE_URLS["sandbox"],
        credentials=PayPalCredentials(client_id="sb-client-id", client_secret="sb-client-secret"),
        webhook_id="WH-SANDBOX-1234",
    )


@pytest.fixture
async def paypal_client(paypal_config, fake_paypal) -> AsyncGenerator[PayPalClient, None]:
    client = PayPalClient(paypal_config, transport=httpx.MockTransport(fake_paypal.handler))
    yield client
    await client.close()


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture
async def engine():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def plans(session_factory) -> dict:
    """Seed the plan catalog; returns plans keyed by name."""
    async with session_factory() as session:
        repo = PlanRepository(session)
        seeded = {}
        for fields in DEFAULT_PLANS:
            plan, _ = await repo.ensure(**fields)
            seeded[plan.name] = plan
        await session.commit()
    return seeded


@pytest.fixture
async def session(session_factory, plans) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_subscription(session_factory, plans):
    """Insert a subscription record in its own committed transaction."""

    async def _make(
        user_id: str = USER_ID,
        plan: str = "pro",
        status: str = "active",
        external_id: Optional[str] = "I-SUB123",
        **fields,
    ) -> UserSubscription:
        async with session_factory() as s:
            record = UserSubscription(
                user_id=user_id,
                plan_id=plans[plan].id,
                status=status,
                external_subscription_id=external_id,
                started_at=utcnow(),
                **fields,
            )
            s.add(record)
            await s.commit()
            return record

    return _make


@pytest.fixture
def fetch(session_factory):
    """Read rows back through a fresh session."""

    async def _fetch(model, **filters):
        from sqlalchemy import select

        async with session_factory() as s:
            stmt = select(model).filter_by(**filters)
            result = await s.execute(stmt)
            return list(result.scalars().all())

    return _fetch


# =============================================================================
# Auth
# =============================================================================

def make_token(user_id: str = USER_ID, expires_in: int = 3600, secret: Optional[str] = None) -> str:
    """Supabase-style HS256 access token."""
    settings = get_settings()
    payload = {
        "sub": user_id,
        "email": "shark@example.com",
        "aud": "authenticated",
        "iss": f"{settings.supabase_url}/auth/v1",
        "exp": int(time.time()) + expires_in,
    }
    return jwt.encode(payload, secret or settings.supabase_jwt_secret, algorithm="HS256")


@pytest.fixture(autouse=True)
def no_jwks():
    """Tests sign with the HS256 secret; never reach the JWKS endpoint."""
    with patch(
        "sharkszone.api.dependencies._decode_with_jwks",
        side_effect=jwt.exceptions.PyJWKClientError("JWKS disabled in tests"),
    ):
        yield


@pytest.fixture
def auth_headers() -> dict:
    return {"Authorization": f"Bearer {make_token()}"}


# =============================================================================
# App Fixtures
# =============================================================================

@pytest.fixture
def app(session_factory, paypal_client, plans):
    """FastAPI app bound to the test database and fake PayPal."""
    from sharkszone.main import app
    from sharkszone.api.dependencies import get_paypal_client
    from sharkszone.infrastructure.db.database import get_session

    async def _session():
        async with session_factory() as s:
            try:
                yield s
            except Exception:
                await s.rollback()
                raise

    app.dependency_overrides[get_session] = _session
    app.dependency_overrides[get_paypal_client] = lambda: paypal_client
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Async test client running in the test's event loop."""
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
