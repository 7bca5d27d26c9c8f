"""Pytest configuration and shared fixtures.

Service tests run against an in-memory SQLite database (aiosqlite) built
from the ORM metadata for every test, so no external services are needed.
"""

from collections.abc import AsyncGenerator

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from parceltrack.db.models import ActorRole, Base, User
from parceltrack.services.authz import Actor
from parceltrack.services.lifecycle import DeliveryLifecycleService
from factories import make_user

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


def _enable_sqlite_foreign_keys(dbapi_conn, _connection_record) -> None:
    """Enforce foreign keys (including ON DELETE CASCADE) on SQLite."""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Fresh in-memory database with the full schema."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory configured like the application's."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """A standalone session for direct repository tests."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def service(session_factory: async_sessionmaker[AsyncSession]) -> DeliveryLifecycleService:
    """Lifecycle service without notify callback or alerting."""
    return DeliveryLifecycleService(session_factory)


# ---------------------------------------------------------------------------
# User fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
async def users(session_factory: async_sessionmaker[AsyncSession]) -> dict[str, User]:
    """One user per role plus a second sender and a second courier."""
    created = {
        "sender": make_user(ActorRole.SENDER, name="Sam Sender"),
        "other_sender": make_user(ActorRole.SENDER, name="Olga Other"),
        "dispatcher": make_user(ActorRole.DISPATCHER, name="Dana Dispatcher"),
        "courier": make_user(ActorRole.COURIER, name="Carl Courier"),
        "other_courier": make_user(ActorRole.COURIER, name="Bea Bike"),
        "admin": make_user(ActorRole.ADMIN, name="Ada Admin"),
    }
    async with session_factory() as session:
        session.add_all(created.values())
        await session.commit()
    return created


@pytest.fixture
def actors(users: dict[str, User]) -> dict[str, Actor]:
    """Actors matching the ``users`` fixture."""
    return {key: Actor(actor_id=user.user_id, role=user.role) for key, user in users.items()}
