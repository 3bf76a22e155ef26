import os

# Timers go through the no-op Celery stand-in; settings are read at import
os.environ["REDIS_URL"] = ""
os.environ["OPERATOR_SECRET_KEY"] = "test-operator-secret"

from collections.abc import AsyncIterator
from datetime import timedelta

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from raffledesk.core.security import create_operator_token
from raffledesk.db.base import Base, utcnow
from raffledesk.db.session import get_db
from raffledesk.main import create_app
from raffledesk.schemas.raffle import RaffleCreate
from raffledesk.services.raffle_service import create_raffle
from raffledesk.services.registration_service import register

# In-memory SQLite shared by every session of one test
TEST_DATABASE_URL = "sqlite+aiosqlite://"


@pytest.fixture(autouse=True)
def reset_rate_limiter():
    """Reset the public rate limiter between tests to prevent cross-test pollution."""
    from raffledesk.api.v1.registration import limiter

    limiter.reset()
    yield
    limiter.reset()


@pytest_asyncio.fixture
async def engine():
    import raffledesk.models  # noqa: F401

    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(engine) -> AsyncIterator[AsyncSession]:
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncIterator[AsyncClient]:
    app = create_app()

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def operator_headers() -> dict:
    return {"Authorization": f"Bearer {create_operator_token('test-operator')}"}


@pytest.fixture
def make_raffle(db_session: AsyncSession):
    """Create a raffle through the service; keyword arguments override RaffleCreate fields."""

    async def _make(now=None, **fields):
        data = {"name": "Launch Party", "prize": "Headphones", **fields}
        return await create_raffle(db_session, RaffleCreate(**data), now=now)

    return _make


@pytest.fixture
def add_participants(db_session: AsyncSession):
    """Register ``count`` people; person N uses code ``1000N``."""

    async def _add(raffle, count, now=None):
        # Distinct timestamps keep registration order stable
        base = now or utcnow()
        participants = []
        for i in range(1, count + 1):
            code = f"{10000 + i}" if raffle.require_confirmation else None
            participants.append(
                await register(
                    db_session,
                    raffle.id,
                    name=f"Person {i}",
                    email=f"person{i}@example.com",
                    code=code,
                    now=base + timedelta(milliseconds=i),
                )
            )
        return participants

    return _add
