"""Notifications business logic layer."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Protocol
from uuid import UUID

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.database import get_db_session
from app.core.enums import NotificationStatusEnum, RoleEnum
from app.modules.audit.repository import AuditRepository
from app.modules.identity.models import User
from app.modules.identity.repository import IdentityRepository
from app.modules.notifications.models import Notification
from app.modules.notifications.repository import NotificationsRepository
from app.shared.exceptions import NotFoundException, UnauthorizedException
from app.shared.utils import utc_now

logger = logging.getLogger(__name__)


class BookedSessionLike(Protocol):
    id: UUID
    student_id: UUID
    tutor_id: UUID


class FailedTransferLike(Protocol):
    id: UUID
    session_id: UUID
    tutor_id: UUID
    amount: int
    retry_count: int


class NotificationsService:
    """Notifications domain service."""

    def __init__(self, repository: NotificationsRepository) -> None:
        self.repository = repository

    async def update_status(self, notification_id: UUID, status: NotificationStatusEnum, actor: User) -> Notification:
        """Update notification status."""
        notification = await self.repository.get_notification_by_id(notification_id)
        if notification is None:
            raise NotFoundException("Notification not found")

        if actor.role.name != RoleEnum.ADMIN and notification.user_id != actor.id:
            raise UnauthorizedException("Only admin or recipient can update notification")

        sent_at = utc_now() if status == NotificationStatusEnum.SENT else None
        return await self.repository.set_status(notification, status, sent_at)

    async def list_my_notifications(
        self,
        actor: User,
        limit: int,
        offset: int,
        status: NotificationStatusEnum | None = None,
    ) -> tuple[list[Notification], int]:
        return await self.repository.list_notifications_for_user(actor.id, limit, offset, status)


class NotificationDispatcher:
    """Entry points other modules use to notify people.

    Delivery itself is handled downstream: booking events go through the outbox,
    admin alerts are persisted as pending email notifications.
    """

    def __init__(
        self,
        audit_repository: AuditRepository,
        notifications_repository: NotificationsRepository,
        identity_repository: IdentityRepository,
    ) -> None:
        self.audit_repository = audit_repository
        self.notifications_repository = notifications_repository
        self.identity_repository = identity_repository

    async def notify_booking_created(self, tutoring_session: BookedSessionLike) -> bool:
        """Enqueue the booking notification; never raises.

        The insert runs in a savepoint so a failure leaves the booking transaction usable.
        """
        try:
            async with self.audit_repository.savepoint():
                await self.audit_repository.create_outbox_event(
                    aggregate_type="session",
                    aggregate_id=str(tutoring_session.id),
                    event_type="session.booked",
                    payload={
                        "session_id": str(tutoring_session.id),
                        "student_id": str(tutoring_session.student_id),
                        "tutor_id": str(tutoring_session.tutor_id),
                    },
                )
        except Exception:
            logger.exception("Failed to enqueue booking notification for session %s", tutoring_session.id)
            return False
        return True

    async def notify_admin_transfer_failures(self, transfers: Sequence[FailedTransferLike]) -> int:
        """Send one summary of permanently failing payouts to every admin.

        Raises when nothing could be recorded so the caller can retry later.
        """
        if not transfers:
            return 0

        admins = await self.identity_repository.list_active_users_by_role(RoleEnum.ADMIN)
        if not admins:
            raise RuntimeError("No active admin users to notify about failed transfers")

        lines = [
            f"- transfer {transfer.id} (session {transfer.session_id}, tutor {transfer.tutor_id}): "
            f"{transfer.amount} minor units after {transfer.retry_count} attempts"
            for transfer in transfers
        ]
        title = f"{len(transfers)} tutor payout(s) need manual attention"
        body = "The following deferred payouts exhausted their retries:\n" + "\n".join(lines)
        admin_email = get_settings().admin_notification_email
        if admin_email:
            body += f"\n\nCopy sent to {admin_email}."

        for admin in admins:
            await self.notifications_repository.create_notification(
                user_id=admin.id,
                channel="email",
                title=title,
                body=body,
            )
        logger.warning("Escalated %d failed transfers to %d admin(s)", len(transfers), len(admins))
        return len(admins)


async def get_notifications_service(session: AsyncSession = Depends(get_db_session)) -> NotificationsService:
    """Dependency provider for notifications service."""
    return NotificationsService(repository=NotificationsRepository(session))


def build_notification_dispatcher(session: AsyncSession) -> NotificationDispatcher:
    return NotificationDispatcher(
        audit_repository=AuditRepository(session),
        notifications_repository=NotificationsRepository(session),
        identity_repository=IdentityRepository(session),
    )
