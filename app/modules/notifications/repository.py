"""Notifications repository layer."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enums import NotificationStatusEnum
from app.modules.notifications.models import Notification
from app.shared.pagination import fetch_page


class NotificationsRepository:
    """DB operations for user notifications."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create_notification(
        self,
        user_id: UUID,
        channel: str,
        title: str,
        body: str,
        *,
        source_event_id: UUID | None = None,
    ) -> Notification:
        notification = Notification(
            user_id=user_id,
            channel=channel,
            title=title,
            body=body,
            source_event_id=source_event_id,
        )
        self.session.add(notification)
        await self.session.flush()
        return notification

    async def get_notification_by_id(self, notification_id: UUID) -> Notification | None:
        return await self.session.get(Notification, notification_id)

    async def list_recipients_for_event(self, source_event_id: UUID) -> set[UUID]:
        """Users already notified about an outbox event."""
        stmt = select(Notification.user_id).where(Notification.source_event_id == source_event_id)
        return set((await self.session.scalars(stmt)).all())

    async def list_notifications_for_user(
        self,
        user_id: UUID,
        limit: int,
        offset: int,
        status: NotificationStatusEnum | None = None,
    ) -> tuple[list[Notification], int]:
        base_stmt: Select[tuple[Notification]] = select(Notification).where(Notification.user_id == user_id)
        if status is not None:
            base_stmt = base_stmt.where(Notification.status == status)
        return await fetch_page(self.session, base_stmt, Notification.created_at.desc(), limit=limit, offset=offset)

    async def set_status(
        self,
        notification: Notification,
        status: NotificationStatusEnum,
        sent_at: datetime | None,
    ) -> Notification:
        notification.status = status
        notification.sent_at = sent_at
        await self.session.flush()
        return notification
