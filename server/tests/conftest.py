"""Test configuration and fixtures."""

import os

# Settings are read on first import of the application package
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENABLE_BACKGROUND_WORKERS", "false")
os.environ.setdefault("BEARER_TOKEN_SECRET", "test-secret")
os.environ.setdefault("ENVIRONMENT", "development")

from datetime import timedelta  # noqa: E402

import jwt  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import NullPool, StaticPool  # noqa: E402

from fakes import FakePaymentGateway, RecordingNotifier  # noqa: E402
from tourmarket.core.clock import utc_today  # noqa: E402
from tourmarket.core.config import settings  # noqa: E402
from tourmarket.core.database import Base, get_db  # noqa: E402
from tourmarket.core.dependencies import get_payment_gateway  # noqa: E402
from tourmarket.models import *  # noqa: E402, F403 - Import all models
from tourmarket.models.tour import ApprovalStatus, Tour, TourDate  # noqa: E402
from tourmarket.services.authorization import Actor, Role  # noqa: E402

# Test database URL (in-memory SQLite for speed)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

OPERATOR_ID = "operator-1"
TRAVELER_ID = "traveler-1"
OTHER_TRAVELER_ID = "traveler-2"
ADMIN_ID = "admin-1"


def make_token(user_id: str, role: str) -> str:
    """Signed bearer token for a test user."""
    return jwt.encode({"sub": user_id, "role": role}, settings.bearer_token_secret, algorithm=settings.jwt_algorithm)


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # Create tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(test_engine):
    """Session factory bound to the test engine."""
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def test_session(session_factory):
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def file_session_factory(tmp_path):
    """
    Session factory over a file-backed database with one connection per session.

    Used where several sessions must run concurrently.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'concurrency.db'}",
        echo=False,
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)

    await engine.dispose()


@pytest.fixture
def fake_gateway():
    """In-memory payment gateway."""
    return FakePaymentGateway()


@pytest.fixture
def notifier():
    """Notifier that records instead of persisting."""
    return RecordingNotifier()


@pytest.fixture
def operator():
    return Actor(user_id=OPERATOR_ID, role=Role.OPERATOR)


@pytest.fixture
def traveler():
    return Actor(user_id=TRAVELER_ID, role=Role.TRAVELER)


@pytest.fixture
def other_traveler():
    return Actor(user_id=OTHER_TRAVELER_ID, role=Role.TRAVELER)


@pytest.fixture
def admin():
    return Actor(user_id=ADMIN_ID, role=Role.ADMIN)


@pytest.fixture
def travel_date():
    """A bookable date a month from now."""
    return utc_today() + timedelta(days=30)


async def create_approved_tour(
    session: AsyncSession,
    travel_dates,
    max_group_size: int = 10,
    price_amount: int = 10000,
    operator_id: str = OPERATOR_ID,
) -> Tour:
    """Insert an active, approved tour running on ``travel_dates``."""
    tour = Tour(
        title="Northern Lights Adventure",
        description="Experience the magical Aurora Borealis in Iceland",
        price_amount=price_amount,
        price_currency="USD",
        max_group_size=max_group_size,
        created_by=operator_id,
        is_active=True,
        approval_status=ApprovalStatus.APPROVED,
        available_dates=[TourDate(travel_date=d) for d in travel_dates],
    )
    session.add(tour)
    await session.commit()
    await session.refresh(tour)
    return tour


@pytest_asyncio.fixture(scope="function")
async def approved_tour(test_session, travel_date):
    """Approved tour with capacity 5 running on ``travel_date``."""
    return await create_approved_tour(test_session, [travel_date], max_group_size=5)


@pytest_asyncio.fixture(scope="function")
async def test_app(session_factory, fake_gateway):
    """Create a test FastAPI application with the database and gateway overridden."""
    from tourmarket.main import create_app

    app = create_app()

    # Override database dependency
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: fake_gateway

    yield app

    # Clean up
    app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def test_client(test_app):
    """Create a test HTTP client."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def auth_headers():
    """Build Authorization headers for a user and role."""
    def _headers(user_id: str = TRAVELER_ID, role: str = "traveler") -> dict[str, str]:
        return {"Authorization": f"Bearer {make_token(user_id, role)}"}
    return _headers


@pytest.fixture
def sample_tour_data(travel_date):
    """Sample tour data for testing."""
    return {
        "title": "Northern Lights Adventure",
        "description": "Experience the magical Aurora Borealis in Iceland",
        "price": {
            "amount": 29999,
            "currency": "USD"
        },
        "max_group_size": 5,
        "available_dates": [travel_date.isoformat()]
    }
