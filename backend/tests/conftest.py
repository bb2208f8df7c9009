"""Pytest configuration and fixtures."""
import os

# Settings are read at import time; pin the test environment before importing the app
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("SERVER_SIDE_POLLING", "false")
os.environ.setdefault("PAYMENT_PROVIDER", "stripe")
os.environ.setdefault("PAYMENT_CURRENCY", "NGN")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test")
os.environ.setdefault("FLUTTERWAVE_WEBHOOK_HASH", "flw-test-hash")

from decimal import Decimal

import httpx
import pytest
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker

from patronly.database import Base, get_db
from patronly.auth.security import create_access_token
from patronly.errors import ReferenceNotFound
from patronly.services.gateways import (
    CheckoutSession, PaymentGateway, TransactionStatus, TransactionVerification, get_gateway,
)
from main import app


class FakeGateway(PaymentGateway):
    """In-memory gateway: references settle only when a test says so."""

    name = "fake"

    def __init__(self):
        self.transactions = {}
        self.checkouts = []
        self.create_error = None
        self.verify_error = None
        self.verify_calls = 0

    def settle(self, reference, amount, status=TransactionStatus.SUCCESSFUL, currency="NGN"):
        self.transactions[reference] = TransactionVerification(
            status=status,
            amount=Decimal(str(amount)) if amount is not None else None,
            currency=currency,
        )

    async def create_checkout(self, payer, amount, currency, callback_url, reference, metadata=None):
        self.validate_amount(amount)
        if self.create_error is not None:
            raise self.create_error
        self.checkouts.append({
            "payer": payer,
            "amount": amount,
            "currency": currency,
            "callback_url": callback_url,
            "reference": reference,
            "metadata": metadata,
        })
        return CheckoutSession(checkout_url=f"https://pay.example.com/{reference}", reference=reference)

    async def verify_transaction(self, reference):
        self.verify_calls += 1
        if self.verify_error is not None:
            raise self.verify_error
        if reference not in self.transactions:
            raise ReferenceNotFound()
        return self.transactions[reference]


@pytest.fixture
async def engine(tmp_path):
    """File-backed SQLite so several sessions can share one database."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def test_db(session_factory):
    """Create test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
async def client(session_factory, gateway):
    """Async API client with the database and payment gateway overridden."""
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway] = lambda: gateway

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac

    app.dependency_overrides.clear()


def auth_headers(user_id: str, role: str = "user", email: str | None = None) -> dict:
    token = create_access_token(
        data={"sub": user_id, "email": email or f"{user_id}@example.com", "app_metadata": {"role": role}}
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def headers_for():
    """Build Authorization headers for an identity-provider user."""
    return auth_headers
