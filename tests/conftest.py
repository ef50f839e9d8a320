"""
Test Configuration and Fixtures
Provides shared test setup for all test cases
"""
import os

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

import sys
import uuid
import pytest
import pytest_asyncio
from datetime import datetime
from typing import Optional, List, Dict
from unittest.mock import patch, AsyncMock, MagicMock
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool
from app.main import app
from app.database.connection import Base
from app.models.user import User
from app.models.number_rate import NumberRateDeck, NumberRate, RateDeckAssignment
from app.models.phone_number import PhoneNumber
from app.models.phone_number_billing import PhoneNumberBilling
from app.services.notification_service import NotificationDispatcher
from app.utils.security import get_password_hash

# Test database URL (use in-memory SQLite for testing)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

ADMIN_PASSWORD = "AdminPass123!"
CUSTOMER_PASSWORD = "CustomerPass123!"

MODULES_TO_PATCH = [
    'app.services.auth_service',
    'app.services.rate_resolver_service',
    'app.services.phone_number_service',
    'app.services.phone_number_catalog_service',
    'app.services.bulk_phone_number_service',
    'app.services.notification_service',
    'app.database.connection',
]


@pytest_asyncio.fixture(scope="function")
async def db_session():
    """Create a fresh database and session for each test"""
    test_engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestSessionLocal = async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False
    )

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with TestSessionLocal() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


class TestSessionContext:
    """Hands the shared test session to services that open their own"""
    def __init__(self, session):
        self.session = session

    async def __aenter__(self):
        return self.session

    async def __aexit__(self, *args):
        pass


@pytest_asyncio.fixture(scope="function")
async def patched_sessions(db_session):
    """Route every service's AsyncSessionLocal to the test session"""
    patches = []
    for module_name in MODULES_TO_PATCH:
        if module_name in sys.modules:
            module = sys.modules[module_name]
            if hasattr(module, 'AsyncSessionLocal'):
                patches.append(patch.object(module, 'AsyncSessionLocal', lambda: TestSessionContext(db_session)))

    for p in patches:
        p.start()
    try:
        yield db_session
    finally:
        for p in patches:
            p.stop()


@pytest_asyncio.fixture(scope="function")
async def client(patched_sessions):
    """Create test HTTP client"""
    original_dispatcher = app.state.notification_dispatcher
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac
    finally:
        app.state.notification_dispatcher = original_dispatcher


@pytest.fixture(scope="function")
def mock_dispatcher(client):
    """Dispatcher double that records calls instead of sending email"""
    dispatcher = MagicMock(spec=NotificationDispatcher)
    dispatcher.notify_assignment = AsyncMock(return_value=True)
    dispatcher.notify_unassignment = AsyncMock(return_value=True)
    dispatcher.notify_purchase = AsyncMock(return_value=True)
    dispatcher.notify_admins_of_purchase = AsyncMock(return_value=1)
    app.state.notification_dispatcher = dispatcher
    return dispatcher


# Data factories. They return plain values: a saga rollback in the shared
# session expires ORM instances held by the test.

async def create_user(session, role: str = "user", email: Optional[str] = None,
                      password: str = CUSTOMER_PASSWORD, name: str = "Test Customer") -> Dict:
    user = User(
        id=str(uuid.uuid4()),
        email=(email or f"{role}_{uuid.uuid4().hex[:10]}@example.com").lower(),
        hashed_password=get_password_hash(password),
        name=name,
        company="Acme Telecom",
        role=role,
        is_active=True,
    )
    session.add(user)
    await session.commit()
    return {"id": user.id, "email": user.email, "name": user.name, "password": password}


async def create_rate_deck(session, rates: List[Dict], currency: str = "USD", name: str = "Standard") -> str:
    deck_id = str(uuid.uuid4())
    session.add(NumberRateDeck(id=deck_id, name=name, currency=currency))
    for rate in rates:
        session.add(NumberRate(
            id=rate.get("id", str(uuid.uuid4())),
            rate_deck_id=deck_id,
            country=rate.get("country", "United States"),
            type=rate.get("type", "Geographic/Local"),
            prefix=rate["prefix"],
            rate=rate["rate"],
            setup_fee=rate.get("setup_fee", 0),
            effective_date=rate.get("effective_date"),
            description=rate.get("description"),
        ))
    await session.commit()
    return deck_id


async def assign_rate_deck_to_user(session, user_id: str, rate_deck_id: str) -> None:
    session.add(RateDeckAssignment(
        id=str(uuid.uuid4()),
        user_id=user_id,
        rate_deck_id=rate_deck_id,
        rate_deck_type="number",
        is_active=True,
    ))
    await session.commit()


async def create_phone_number(session, number: Optional[str] = None, **overrides) -> str:
    fields = {
        "id": str(uuid.uuid4()),
        "number": number or f"+1415{uuid.uuid4().int % 10**7:07d}",
        "country": "United States",
        "number_type": "Geographic/Local",
        "status": "available",
        "backorder_only": False,
        "provider": "Carrier One",
        "capabilities": ["voice", "sms"],
        "monthly_rate": 0,
        "setup_fee": 0,
        "currency": "USD",
        "billing_cycle": "monthly",
    }
    fields.update(overrides)
    session.add(PhoneNumber(**fields))
    await session.commit()
    return fields["id"]


async def create_billing(session, phone_number_id: str, user_id: str, amount: float,
                         assignment_id: Optional[str] = None, status: str = "pending",
                         transaction_type: str = "monthly_fee") -> str:
    now = datetime(2026, 1, 1)
    billing = PhoneNumberBilling(
        id=str(uuid.uuid4()),
        phone_number_id=phone_number_id,
        user_id=user_id,
        assignment_id=assignment_id,
        billing_period_start=now,
        billing_period_end=now,
        amount=amount,
        currency="USD",
        status=status,
        billing_date=now,
        transaction_type=transaction_type,
    )
    session.add(billing)
    await session.commit()
    return billing.id


async def login(client: AsyncClient, email: str, password: str) -> Dict[str, str]:
    resp = await client.post("/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.text
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}


@pytest_asyncio.fixture(scope="function")
async def admin_user(db_session):
    return await create_user(db_session, role="admin", email="admin@example.com",
                             password=ADMIN_PASSWORD, name="System Administrator")


@pytest_asyncio.fixture(scope="function")
async def customer(db_session):
    return await create_user(db_session, role="user", name="Jane Customer")


@pytest_asyncio.fixture(scope="function")
async def admin_headers(client, admin_user):
    return await login(client, admin_user["email"], ADMIN_PASSWORD)


@pytest_asyncio.fixture(scope="function")
async def customer_headers(client, customer):
    return await login(client, customer["email"], CUSTOMER_PASSWORD)


@pytest_asyncio.fixture(scope="function")
async def us_rate_deck(db_session):
    """Deck with a generic US rate and a more specific San Francisco rate"""
    return await create_rate_deck(db_session, [
        {"prefix": "+1", "rate": 5.00, "setup_fee": 1.00, "description": "US generic"},
        {"prefix": "+1415", "rate": 9.99, "setup_fee": 2.50, "description": "San Francisco"},
    ])
