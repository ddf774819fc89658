from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import func, select

from autobid.db.enums import AuctionStatus, UserRole
from autobid.db.models import Bid, Notification, User
from autobid.services.errors import AuctionServiceError
from autobid.services.lifecycle import AuctionLifecycle


async def _seed_users(session_factory, *names: str) -> list[User]:
    async with session_factory() as session:
        async with session.begin():
            users = [
                User(
                    username=name,
                    email=f"{name}@example.com",
                    first_name=name.title(),
                    last_name="",
                    role=UserRole.ADMIN if name == "admin" else UserRole.USER,
                    is_active=True,
                )
                for name in names
            ]
            session.add_all(users)
            await session.flush()
    return users


@pytest.mark.asyncio
async def test_concurrent_bids_keep_price_monotonic(integration_session_factory) -> None:
    admin, *bidders = await _seed_users(integration_session_factory, "admin", "b1", "b2", "b3", "b4", "b5")
    lifecycle = AuctionLifecycle(integration_session_factory)
    auction = await lifecycle.create_auction(
        admin.id,
        title="Daihatsu Terios",
        description="Concurrency fixture",
        starting_price=100000,
        minimum_increment=50000,
        condition="good",
        location="Bekasi",
        end_time=datetime.now(UTC) + timedelta(hours=1),
    )

    outcomes = await asyncio.gather(
        *(lifecycle.place_bid(auction.id, bidder.id, 150000) for bidder in bidders),
        return_exceptions=True,
    )

    accepted = [item for item in outcomes if not isinstance(item, BaseException)]
    rejected = [item for item in outcomes if isinstance(item, AuctionServiceError)]
    assert len(accepted) == 1
    assert len(rejected) == len(bidders) - 1

    async with integration_session_factory() as session:
        bid_count = await session.scalar(select(func.count(Bid.id)).where(Bid.auction_id == auction.id))
    assert bid_count == 1
    assert (await lifecycle.get_auction(auction.id)).current_price == 150000


@pytest.mark.asyncio
async def test_concurrent_close_and_sweep_issue_one_invoice(integration_session_factory) -> None:
    admin, winner = await _seed_users(integration_session_factory, "admin", "winner")
    now = datetime.now(UTC)
    setup = AuctionLifecycle(integration_session_factory, clock=lambda: now)
    auction = await setup.create_auction(
        admin.id,
        title="Honda HR-V",
        description="Race fixture",
        starting_price=100000,
        condition="new",
        location="Tangerang",
        end_time=now + timedelta(minutes=5),
    )
    await setup.place_bid(auction.id, winner.id, 150000)

    later = AuctionLifecycle(integration_session_factory, clock=lambda: now + timedelta(minutes=10))
    results = await asyncio.gather(
        later.close_auction(auction.id),
        later.sweep_expired_auctions(),
        later.close_auction(auction.id),
    )

    closed = await later.get_auction(auction.id)
    assert closed.status == AuctionStatus.ENDED
    assert closed.winner_user_id == winner.id
    assert closed.invoice_number is not None
    assert results[1] in (0, 1)

    async with integration_session_factory() as session:
        won = await session.scalar(
            select(func.count(Notification.id)).where(
                Notification.user_id == winner.id,
                Notification.title == "You won the auction",
            )
        )
        invoiced = await session.scalar(
            select(func.count(Notification.id)).where(
                Notification.user_id == winner.id,
                Notification.title == "Invoice issued",
            )
        )
    assert won == 1
    assert invoiced == 1
