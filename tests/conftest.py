"""Shared fixtures and factory helpers."""

import itertools
import typing as t
from datetime import datetime, timezone
from datetime import timedelta as td
from pathlib import Path

import pytest
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.core.auth import get_password_hash
from app.core.database import Base, configure_sqlite
from app.core.events import EVENT_BUS
from app.core.models import Freshness, Listing, User, UserRole
from app.schemas.listing import ListingCreate, ListingResponse
from app.services.listing_service import ListingService

NOW: datetime = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)
PASSWORD: str = "correct-horse-battery"
_USER_SEQUENCE: t.Iterator[int] = itertools.count(1)


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = NOW) -> None:
        self.current = now

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current += td(**kwargs)


@pytest.fixture
async def async_engine(tmp_path: Path) -> t.AsyncIterator[AsyncEngine]:
    """File-backed SQLite engine so separate sessions see each other."""
    engine: AsyncEngine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"
    )
    configure_sqlite(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(
    async_engine: AsyncEngine,
) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def db_session(
    session_maker: async_sessionmaker[AsyncSession],
) -> t.AsyncIterator[AsyncSession]:
    async with session_maker() as session:
        yield session


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture(autouse=True)
def clean_event_bus() -> t.Iterator[None]:
    """Each test starts and ends without subscribers."""
    EVENT_BUS.clear()
    yield
    EVENT_BUS.clear()


# ---------------------------------------------------------------------------
# Factory helpers
# ---------------------------------------------------------------------------


async def make_user(
    session: AsyncSession,
    *,
    role: UserRole = UserRole.RECEIVER,
    name: str = "Test User",
    email: str | None = None,
    password: str = PASSWORD,
) -> User:
    """Insert a user and return it."""
    user: User = User(
        name=name,
        email=email or f"{role.value}-{next(_USER_SEQUENCE)}@example.org",
        hashed_password=get_password_hash(password),
        role=role,
        is_active=True,
    )
    session.add(user)
    await session.flush()
    return user


def listing_data(
    *,
    title: str = "Vegetable curry",
    total_quantity: float = 10,
    unit: str = "kg",
    freshness: Freshness = Freshness.FRESH,
    **extra: t.Any,
) -> ListingCreate:
    """Return a valid listing payload."""
    return ListingCreate(
        title=title,
        total_quantity=total_quantity,
        unit=unit,
        freshness=freshness,
        **extra,
    )


async def make_listing(
    session: AsyncSession,
    clock: FrozenClock,
    provider: User,
    **kwargs: t.Any,
) -> ListingResponse:
    """Create a listing through the service and return its response."""
    return await ListingService(session, clock).create_listing(
        provider.id, listing_data(**kwargs)
    )


async def get_listing_row(session: AsyncSession, listing_id: int) -> Listing:
    """Read a listing row bypassing the identity map."""
    listing: Listing | None = await session.get(
        Listing, listing_id, populate_existing=True
    )
    assert listing is not None
    return listing
