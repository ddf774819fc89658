from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Protocol

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from autobid.db.enums import NotificationType
from autobid.db.models import Notification
from autobid.services.auction_service import list_admin_user_ids
from autobid.services.errors import DependencyFailure

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    async def notify_user(
        self,
        user_id: int,
        *,
        notification_type: NotificationType,
        title: str,
        message: str,
        data: dict | None = None,
    ) -> None: ...

    async def notify_admins(
        self,
        *,
        notification_type: NotificationType,
        title: str,
        message: str,
        data: dict | None = None,
    ) -> int: ...


async def create_notification(
    session: AsyncSession,
    *,
    user_id: int,
    notification_type: NotificationType,
    title: str,
    message: str,
    data: dict | None = None,
) -> Notification:
    notification = Notification(
        user_id=user_id,
        type=notification_type,
        title=title,
        message=message,
        data=data,
        is_read=False,
        created_at=datetime.now(UTC),
    )
    session.add(notification)
    await session.flush()
    return notification


async def create_admin_notifications(
    session: AsyncSession,
    *,
    notification_type: NotificationType,
    title: str,
    message: str,
    data: dict | None = None,
) -> int:
    admin_ids = await list_admin_user_ids(session)
    for admin_id in admin_ids:
        await create_notification(
            session,
            user_id=admin_id,
            notification_type=notification_type,
            title=title,
            message=message,
            data=data,
        )
    return len(admin_ids)


async def list_user_notifications(
    session: AsyncSession,
    *,
    user_id: int,
    limit: int = 50,
) -> list[Notification]:
    rows = await session.execute(
        select(Notification)
        .where(Notification.user_id == user_id)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(max(limit, 1))
    )
    return list(rows.scalars().all())


async def mark_notification_read(session: AsyncSession, *, notification_id: int, user_id: int) -> bool:
    result = await session.execute(
        update(Notification)
        .where(Notification.id == notification_id, Notification.user_id == user_id)
        .values(is_read=True)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def mark_all_notifications_read(session: AsyncSession, *, user_id: int) -> int:
    result = await session.execute(
        update(Notification)
        .where(Notification.user_id == user_id, Notification.is_read.is_(False))
        .values(is_read=True)
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount or 0)


class DatabaseNotificationSink:
    """Stores notifications in their own transaction, apart from the caller's."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def notify_user(
        self,
        user_id: int,
        *,
        notification_type: NotificationType,
        title: str,
        message: str,
        data: dict | None = None,
    ) -> None:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await create_notification(
                        session,
                        user_id=user_id,
                        notification_type=notification_type,
                        title=title,
                        message=message,
                        data=data,
                    )
        except SQLAlchemyError as exc:
            raise DependencyFailure(f"Failed to store notification for user {user_id}") from exc

    async def notify_admins(
        self,
        *,
        notification_type: NotificationType,
        title: str,
        message: str,
        data: dict | None = None,
    ) -> int:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    delivered = await create_admin_notifications(
                        session,
                        notification_type=notification_type,
                        title=title,
                        message=message,
                        data=data,
                    )
        except SQLAlchemyError as exc:
            raise DependencyFailure("Failed to store admin notifications") from exc
        logger.debug("Broadcast %r to %s admin(s)", title, delivered)
        return delivered
