"""Shared test fixtures — single test DB for all test modules."""
from __future__ import annotations

import os

# Settings are read at import time, so the environment must be in place first
TEST_DB_URL = "sqlite+aiosqlite:///file:test?mode=memory&cache=shared&uri=true"
os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["ADMIN_API_KEY"] = "test-admin-key"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["EMAIL_SEND_DELAY_SECONDS"] = "0"
os.environ["TIMEZONE"] = "UTC"
os.environ["MAILTRAP_API_KEY"] = ""

from datetime import date

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession

# Use a shared in-memory DB with check_same_thread=False and StaticPool
# This ensures all connections see the same in-memory database.
from sqlalchemy.pool import StaticPool

from rakuado.db.tables import Base
from rakuado.db.engine import get_session
from rakuado.errors import DeliveryError
from rakuado.services.mailer import get_mailer

ADMIN_HEADERS = {"X-Admin-Key": "test-admin-key"}

test_engine = create_async_engine(
    TEST_DB_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSession = async_sessionmaker(test_engine, expire_on_commit=False, class_=AsyncSession)


async def override_get_session():
    async with TestSession() as session:
        yield session


class FakeMailer:
    """Records messages instead of sending.

    Recipients in `fail_for` raise DeliveryError; those in `crash_for` raise
    a RuntimeError as an unexpected transport fault.
    """

    def __init__(self):
        self.sent = []
        self.fail_for: set[str] = set()
        self.crash_for: set[str] = set()

    async def send(self, message):
        if message.to in self.crash_for:
            raise RuntimeError("connection reset mid-request")
        if message.to in self.fail_for:
            raise DeliveryError(f"Mailbox unavailable: {message.to}")
        self.sent.append(message)


# Import app and override BEFORE any test module imports app
from rakuado.api.main import app  # noqa: E402

app.dependency_overrides[get_session] = override_get_session

# Scheduled jobs open their own sessions through the engine module
import rakuado.db.engine as _engine_mod  # noqa: E402
_engine_mod.async_session = TestSession


@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    """Create tables before each test, drop after."""
    import rakuado.db.analytics_tables  # noqa: F401
    import rakuado.db.partner_tables  # noqa: F401

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def session():
    async with TestSession() as s:
        yield s


@pytest.fixture
def mailer():
    fake = FakeMailer()
    app.dependency_overrides[get_mailer] = lambda: fake
    yield fake
    app.dependency_overrides.pop(get_mailer, None)


@pytest_asyncio.fixture
async def client():
    """Unauthenticated client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def admin_client():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test", headers=ADMIN_HEADERS) as ac:
        yield ac


@pytest.fixture
def make_record():
    """Insert a snapshot/daily record: await make_record("daily", "2026-01-28", views=.., sites=..)."""
    from rakuado.db.repository import AnalyticsRepository
    from rakuado.models import Activity

    async def _make(kind: str, day: str, views: int = 0, clicks: int = 0, sites: dict | None = None):
        record = Activity(key=day, views=views, clicks=clicks, sites=sites or {}, captured_at_ms=0)
        async with TestSession() as s:
            repo = AnalyticsRepository(s)
            if kind == "snapshot":
                await repo.save_snapshot(record)
            else:
                await repo.save_daily(record)
            await s.commit()
        return record

    return _make


@pytest.fixture
def make_partner():
    from rakuado.db.partner_tables import PartnerRow

    async def _make(**fields):
        data = {
            "domain": "blog.example.jp",
            "name": "Example Blog",
            "monthly_amount": 10000,
            "start_date": date(2025, 1, 1),
            "email": "owner@example.jp",
            "bank_info": {"bankName": "みずほ銀行", "branchName": "本店", "accountType": "普通",
                          "accountNumber": "1234567", "accountHolder": "レイ タロウ"},
            **fields,
        }
        async with TestSession() as s:
            partner = PartnerRow(**data)
            s.add(partner)
            await s.commit()
        return partner

    return _make
