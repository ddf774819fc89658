from __future__ import annotations

from datetime import UTC, datetime, timedelta
from types import SimpleNamespace

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from autobid.config import Settings
from autobid.db.base import Base
from autobid.db.enums import UserRole
from autobid.db.models import Auction, Bid, User
from autobid.services.errors import DependencyFailure
from autobid.services.lifecycle import AuctionLifecycle

pytest.importorskip("aiosqlite")

BASE_TIME = datetime(2026, 3, 1, 9, 0, tzinfo=UTC)


class FrozenClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


class RecordingNotifier:
    def __init__(self) -> None:
        self.user_messages: list[SimpleNamespace] = []
        self.admin_messages: list[SimpleNamespace] = []
        self.fail = False

    async def notify_user(self, user_id, *, notification_type, title, message, data=None) -> None:
        if self.fail:
            raise DependencyFailure("notification sink offline")
        self.user_messages.append(
            SimpleNamespace(user_id=user_id, type=notification_type, title=title, message=message, data=data)
        )

    async def notify_admins(self, *, notification_type, title, message, data=None) -> int:
        if self.fail:
            raise DependencyFailure("notification sink offline")
        self.admin_messages.append(SimpleNamespace(type=notification_type, title=title, message=message, data=data))
        return 1

    def for_user(self, user_id: int) -> list[SimpleNamespace]:
        return [item for item in self.user_messages if item.user_id == user_id]

    def titles_for(self, user_id: int) -> list[str]:
        return [item.title for item in self.for_user(user_id)]


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(_env_file=None, session_secret="unit-test-secret")


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(BASE_TIME)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def lifecycle(session_factory, notifier, clock, test_settings) -> AuctionLifecycle:
    return AuctionLifecycle(session_factory, notifier=notifier, config=test_settings, clock=clock)


async def _create_user(
    session_factory,
    username: str,
    *,
    role: UserRole = UserRole.USER,
    is_active: bool = True,
) -> User:
    async with session_factory() as session:
        async with session.begin():
            user = User(
                username=username,
                email=f"{username}@example.com",
                first_name=username.title(),
                last_name="Tester",
                phone="+62-811-0000",
                role=role,
                is_active=is_active,
                created_at=BASE_TIME,
            )
            session.add(user)
            await session.flush()
    return user


async def _create_auction(
    lifecycle: AuctionLifecycle,
    seller: User,
    *,
    starting_price: int = 100000,
    minimum_increment: int = 50000,
    hours: int = 2,
    title: str = "Toyota Avanza 1.3 G",
) -> Auction:
    return await lifecycle.create_auction(
        seller.id,
        title=title,
        description="Single owner, full service history",
        starting_price=starting_price,
        minimum_increment=minimum_increment,
        condition="good",
        location="Jakarta Selatan",
        end_time=lifecycle._clock() + timedelta(hours=hours),
        production_year=2019,
        plate_number="B 1234 XYZ",
    )


async def _insert_bid(session_factory, *, auction_id: int, user_id: int, amount: int, created_at: datetime) -> Bid:
    async with session_factory() as session:
        async with session.begin():
            bid = Bid(auction_id=auction_id, bidder_user_id=user_id, amount=amount, created_at=created_at)
            session.add(bid)
            await session.flush()
    return bid


@pytest_asyncio.fixture
async def admin(session_factory) -> User:
    return await _create_user(session_factory, "admin", role=UserRole.ADMIN)


@pytest_asyncio.fixture
async def alice(session_factory) -> User:
    return await _create_user(session_factory, "alice")


@pytest_asyncio.fixture
async def bob(session_factory) -> User:
    return await _create_user(session_factory, "bob")


@pytest_asyncio.fixture
async def carol(session_factory) -> User:
    return await _create_user(session_factory, "carol")


@pytest.fixture
def make_user(session_factory):
    async def factory(username: str, **kwargs) -> User:
        return await _create_user(session_factory, username, **kwargs)

    return factory


@pytest.fixture
def make_auction(lifecycle):
    async def factory(seller: User, **kwargs) -> Auction:
        return await _create_auction(lifecycle, seller, **kwargs)

    return factory


@pytest.fixture
def insert_bid(session_factory):
    async def factory(*, auction_id: int, user_id: int, amount: int, created_at: datetime) -> Bid:
        return await _insert_bid(
            session_factory,
            auction_id=auction_id,
            user_id=user_id,
            amount=amount,
            created_at=created_at,
        )

    return factory


@pytest.fixture
def ended_auction(lifecycle, clock, make_auction):
    """Factory: auction listed by ``seller`` and won by ``winner`` at ``amount``."""

    async def factory(seller: User, winner: User, *, amount: int = 150000) -> Auction:
        auction = await make_auction(seller)
        await lifecycle.place_bid(auction.id, winner.id, amount)
        clock.advance(hours=3)
        return await lifecycle.close_auction(auction.id)

    return factory
