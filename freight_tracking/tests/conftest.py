"""
Centralized Test Configuration.
"""

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import Pool, StaticPool

from freight_tracking.app.main import app
from freight_tracking.app.db.session import get_db, Base
from freight_tracking.app.core.jwt import create_access_token
from freight_tracking.app.core.redis_client import get_redis
from freight_tracking.app.models.enums import UserRole
from freight_tracking.app.models.shipment import Shipment, ShipmentAssignment
from freight_tracking.app.models.user import User
from freight_tracking.app.services.position_source import FixBufferPositionSource
from freight_tracking.app.services.runtime import TrackingRuntime, get_tracking_runtime

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


class MockRedis:
    """In-memory stand-in for the Redis client; records published events."""

    def __init__(self):
        self.store = {}
        self.published = []
        self._closed = False

    async def ping(self):
        return not self._closed

    async def get(self, key):
        if self._closed:
            return None
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        if self._closed:
            return False
        self.store[key] = value
        return True

    async def delete(self, *keys):
        if self._closed:
            return 0
        removed = 0
        for key in keys:
            if key in self.store:
                del self.store[key]
                removed += 1
        return removed

    async def publish(self, channel, message):
        if self._closed:
            raise ConnectionError("Redis connection closed")
        self.published.append((channel, message))
        return 1

    async def aclose(self):
        self._closed = True
        self.store = {}


@pytest.fixture
def mock_redis():
    return MockRedis()


@pytest.fixture(autouse=True)
async def setup_database():
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def session_factory():
    return TestingSessionLocal


@pytest.fixture
async def tracking_runtime(setup_database):
    runtime = TrackingRuntime(TestingSessionLocal, source=FixBufferPositionSource())
    yield runtime
    await runtime.shutdown()


@pytest.fixture
def apply_overrides(mock_redis, tracking_runtime):
    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    async def override_get_redis():
        return mock_redis

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis
    app.dependency_overrides[get_tracking_runtime] = lambda: tracking_runtime
    yield
    app.dependency_overrides = {}


@pytest.fixture
async def client(apply_overrides):
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# Shared session for fixture data creation
@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


# Data factories

async def create_user(db: AsyncSession, username: str, role: UserRole, is_active: bool = True) -> User:
    user = User(
        email=f"{username}@example.com",
        username=username,
        full_name=username.title(),
        role=role,
        is_active=is_active,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


def auth_headers(user: User) -> dict:
    token = create_access_token(data={"sub": user.username, "user_id": user.id, "role": user.role.value})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def driver(db_session):
    return await create_user(db_session, "driver", UserRole.DRIVER)


@pytest.fixture
async def shipper(db_session):
    return await create_user(db_session, "shipper", UserRole.SHIPPER)


@pytest.fixture
async def operator(db_session):
    return await create_user(db_session, "operator", UserRole.OPERATOR)


@pytest.fixture
async def shipment(db_session, shipper, driver):
    """An accepted shipment assigned to ``driver``."""
    shipment = Shipment(
        shipper_id=shipper.id,
        origin_address="Rua A, 100 - Campinas",
        destination_address="Av. B, 200 - Santos",
        status="ACCEPTED",
    )
    db_session.add(shipment)
    await db_session.flush()

    db_session.add(ShipmentAssignment(shipment_id=shipment.id, driver_id=driver.id, status="ACCEPTED"))
    await db_session.commit()
    await db_session.refresh(shipment)
    return shipment


@pytest.fixture
def driver_headers(driver):
    return auth_headers(driver)


@pytest.fixture
def operator_headers(operator):
    return auth_headers(operator)


@pytest.fixture
def user_factory(db_session):
    async def _create(username: str, role: UserRole = UserRole.DRIVER, is_active: bool = True) -> User:
        return await create_user(db_session, username, role, is_active)
    return _create


@pytest.fixture
def headers_for():
    return auth_headers
