from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from autobid.db.enums import AuctionStatus, UserRole, VehicleCondition
from autobid.db.models import Auction, Bid, User
from autobid.services.errors import ValidationFailed


@dataclass(slots=True)
class AuctionDraft:
    title: str
    description: str
    starting_price: int
    minimum_increment: int
    condition: VehicleCondition
    location: str
    end_time: datetime
    production_year: int | None = None
    plate_number: str | None = None
    chassis_number: str | None = None
    engine_number: str | None = None
    document_info: str | None = None


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def minimum_next_bid(auction: Auction) -> int:
    return auction.current_price + auction.minimum_increment


async def get_user_by_id(session: AsyncSession, user_id: int) -> User | None:
    return await session.scalar(select(User).where(User.id == user_id))


async def list_admin_user_ids(session: AsyncSession) -> list[int]:
    rows = await session.execute(
        select(User.id).where(User.role == UserRole.ADMIN, User.is_active.is_(True)).order_by(User.id.asc())
    )
    return list(rows.scalars().all())


async def get_auction_by_id(session: AsyncSession, auction_id: int) -> Auction | None:
    return await session.scalar(select(Auction).where(Auction.id == auction_id))


async def create_auction_record(
    session: AsyncSession,
    *,
    seller_user_id: int,
    draft: AuctionDraft,
    now: datetime,
) -> Auction:
    auction = Auction(
        title=draft.title,
        description=draft.description,
        starting_price=draft.starting_price,
        current_price=draft.starting_price,
        minimum_increment=draft.minimum_increment,
        condition=draft.condition,
        location=draft.location,
        status=AuctionStatus.ACTIVE,
        start_time=now,
        end_time=draft.end_time,
        seller_user_id=seller_user_id,
        production_year=draft.production_year,
        plate_number=draft.plate_number,
        chassis_number=draft.chassis_number,
        engine_number=draft.engine_number,
        document_info=draft.document_info,
        created_at=now,
        updated_at=now,
    )
    session.add(auction)
    await session.flush()
    return auction


async def load_top_bid(session: AsyncSession, auction_id: int) -> Bid | None:
    """Highest bid; equal amounts resolve to the earliest one."""
    return await session.scalar(
        select(Bid)
        .where(Bid.auction_id == auction_id)
        .order_by(Bid.amount.desc(), Bid.created_at.asc(), Bid.id.asc())
        .limit(1)
    )


async def list_bids(session: AsyncSession, auction_id: int) -> list[Bid]:
    rows = await session.execute(
        select(Bid)
        .where(Bid.auction_id == auction_id)
        .order_by(Bid.created_at.desc(), Bid.id.desc())
    )
    return list(rows.scalars().all())


async def list_distinct_bidder_ids(session: AsyncSession, auction_id: int) -> list[int]:
    rows = await session.execute(
        select(Bid.bidder_user_id)
        .where(Bid.auction_id == auction_id)
        .group_by(Bid.bidder_user_id)
        .order_by(Bid.bidder_user_id.asc())
    )
    return list(rows.scalars().all())


async def raise_current_price(
    session: AsyncSession,
    *,
    auction_id: int,
    amount: int,
    now: datetime,
) -> bool:
    """Conditionally move the price to ``amount``; False when the auction no longer accepts it."""
    result = await session.execute(
        update(Auction)
        .where(
            Auction.id == auction_id,
            Auction.status == AuctionStatus.ACTIVE,
            Auction.end_time > now,
            Auction.current_price + Auction.minimum_increment <= amount,
        )
        .values(current_price=amount, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def mark_auction_ended(
    session: AsyncSession,
    *,
    auction_id: int,
    now: datetime,
    expired_before: datetime | None = None,
) -> bool:
    """Flip ``active -> ended``; only one concurrent caller gets True."""
    stmt = (
        update(Auction)
        .where(Auction.id == auction_id, Auction.status == AuctionStatus.ACTIVE)
        .values(status=AuctionStatus.ENDED, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if expired_before is not None:
        stmt = stmt.where(Auction.end_time <= expired_before)
    result = await session.execute(stmt)
    return result.rowcount == 1


async def assign_winner(
    session: AsyncSession,
    *,
    auction_id: int,
    winner_user_id: int | None,
    now: datetime,
) -> None:
    values: dict = {"winner_user_id": winner_user_id, "updated_at": now}
    if winner_user_id is None:
        values["archived"] = True
    await session.execute(
        update(Auction)
        .where(Auction.id == auction_id, Auction.status == AuctionStatus.ENDED)
        .values(**values)
        .execution_options(synchronize_session=False)
    )


async def list_expired_auction_ids(session: AsyncSession, *, now: datetime) -> list[int]:
    rows = await session.execute(
        select(Auction.id)
        .where(Auction.status == AuctionStatus.ACTIVE, Auction.end_time <= now)
        .order_by(Auction.end_time.asc(), Auction.id.asc())
    )
    return list(rows.scalars().all())


async def set_auction_archived(
    session: AsyncSession,
    *,
    auction_id: int,
    archived: bool,
    now: datetime,
) -> bool:
    result = await session.execute(
        update(Auction)
        .where(Auction.id == auction_id)
        .values(archived=archived, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def load_users(session: AsyncSession, user_ids: list[int]) -> dict[int, User]:
    unique_ids = sorted(set(user_ids))
    if not unique_ids:
        return {}
    rows = await session.execute(select(User).where(User.id.in_(unique_ids)))
    return {user.id: user for user in rows.scalars().all()}


def _required_text(value: str | None, field: str) -> str:
    text = (value or "").strip()
    if not text:
        raise ValidationFailed(f"{field} is required")
    return text


def _optional_text(value: str | None) -> str | None:
    text = (value or "").strip()
    return text or None


def _positive_int(value: object, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValidationFailed(f"{field} must be a positive integer")
    return value


def build_auction_draft(
    *,
    title: str,
    description: str,
    starting_price: int,
    minimum_increment: int,
    condition: str | VehicleCondition,
    location: str,
    end_time: datetime,
    now: datetime,
    production_year: int | None = None,
    plate_number: str | None = None,
    chassis_number: str | None = None,
    engine_number: str | None = None,
    document_info: str | None = None,
) -> AuctionDraft:
    try:
        parsed_condition = VehicleCondition(str(condition).strip().lower())
    except ValueError:
        allowed = ", ".join(item.value for item in VehicleCondition)
        raise ValidationFailed(f"Unknown condition {condition!r}; expected one of: {allowed}") from None

    normalized_end = ensure_utc(end_time)
    if normalized_end <= now:
        raise ValidationFailed("End time must be in the future")

    if production_year is not None:
        production_year = _positive_int(production_year, "Production year")

    return AuctionDraft(
        title=_required_text(title, "Title"),
        description=_required_text(description, "Description"),
        starting_price=_positive_int(starting_price, "Starting price"),
        minimum_increment=_positive_int(minimum_increment, "Minimum increment"),
        condition=parsed_condition,
        location=_required_text(location, "Location"),
        end_time=normalized_end,
        production_year=production_year,
        plate_number=_optional_text(plate_number),
        chassis_number=_optional_text(chassis_number),
        engine_number=_optional_text(engine_number),
        document_info=_optional_text(document_info),
    )


async def promote_users_to_admin(session: AsyncSession, user_ids: list[int]) -> int:
    if not user_ids:
        return 0
    result = await session.execute(
        update(User)
        .where(User.id.in_(user_ids), User.role != UserRole.ADMIN)
        .values(role=UserRole.ADMIN)
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount or 0)
