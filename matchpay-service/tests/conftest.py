"""
Shared fixtures for the MatchPay service tests.

Every test gets its own SQLite database file (through aiosqlite) with the
production models, a fake payment provider and, for HTTP tests, an
httpx.AsyncClient bound to the FastAPI app with session and provider
dependencies overridden.
"""
import asyncio
import os
import uuid
from decimal import Decimal

os.environ.setdefault("MATCHPAY_DATABASE_URL", "sqlite+aiosqlite://")

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app import profiles
from app.config import settings
from app.db import Base, get_session
from app.main import app
from app.models import Profile, Wallet
from app.payments import make_reference
from app.provider import ChargeVerification, ProviderUnavailable, get_provider

WEBHOOK_HASH = "test-webhook-hash"
OPERATOR_KEY = "test-operator-key"

class FakeProvider:
    """In-memory stand-in for the Flutterwave verify-by-reference API."""

    def __init__(self):
        self.charges = {}
        self.calls = 0
        self.unavailable = False

    def charge(self, tx_ref, amount="500", status="successful", currency="NGN"):
        self.charges[tx_ref] = ChargeVerification(
            tx_ref=tx_ref,
            status=status,
            amount=Decimal(amount),
            currency=currency,
            charge_id=str(285959875 + len(self.charges)),
        )
        return self.charges[tx_ref]

    async def verify_by_reference(self, tx_ref):
        self.calls += 1
        await asyncio.sleep(0)
        if self.unavailable:
            raise ProviderUnavailable("Could not reach payment provider")
        return self.charges.get(
            tx_ref,
            ChargeVerification(tx_ref=tx_ref, status="not_found", amount=Decimal("0"),
                               currency="", charge_id=None),
        )

@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'matchpay.db'}",
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()

@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)

@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session

@pytest.fixture
def provider():
    return FakeProvider()

@pytest.fixture
def make_profile(session_factory):
    async def _make(gender="male", quota=None, blocked=False, user_id=None, name=None):
        user_id = user_id or uuid.uuid4()
        async with session_factory() as session:
            profile = await profiles.create_profile(
                user_id, gender, session, display_name=name, free_swipe_quota=quota
            )
            if blocked:
                profile.is_blocked = True
                await session.commit()
        return user_id
    return _make

@pytest.fixture
def paid_reference(provider):
    """Mints a reference for swiper -> swiped and registers a successful charge for it."""
    def _ref(swiper_id, swiped_id, amount="500", status="successful", currency="NGN"):
        tx_ref = make_reference(swiper_id, swiped_id)
        provider.charge(tx_ref, amount=amount, status=status, currency=currency)
        return tx_ref
    return _ref

@pytest.fixture
def read_wallet(session_factory):
    async def _read(user_id):
        async with session_factory() as session:
            return await session.get(Wallet, user_id)
    return _read

@pytest.fixture
def read_quota(session_factory):
    async def _read(user_id):
        async with session_factory() as session:
            return (await session.get(Profile, user_id)).free_swipe_quota
    return _read

@pytest.fixture
def count_rows(session_factory):
    async def _count(model, *criteria):
        async with session_factory() as session:
            stmt = select(func.count()).select_from(model)
            if criteria:
                stmt = stmt.where(*criteria)
            return (await session.execute(stmt)).scalar_one()
    return _count

@pytest.fixture
def fund_wallet(session_factory):
    async def _fund(user_id, amount):
        from app import ledger
        async with session_factory() as session:
            await ledger.credit(user_id, Decimal(str(amount)), session)
            await session.commit()
    return _fund

@pytest_asyncio.fixture
async def client(session_factory, provider, monkeypatch):
    async def _get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = _get_session
    app.dependency_overrides[get_provider] = lambda: provider
    monkeypatch.setattr(settings, "FLUTTERWAVE_WEBHOOK_HASH", WEBHOOK_HASH)
    monkeypatch.setattr(settings, "OPERATOR_API_KEY", OPERATOR_KEY)

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()
