"""Audit business logic layer."""

from __future__ import annotations

import logging
from uuid import UUID

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db_session
from app.core.enums import OutboxStatusEnum, RoleEnum
from app.modules.audit.models import AuditLog, OutboxEvent
from app.modules.audit.repository import AuditRepository
from app.modules.identity.models import User
from app.shared.exceptions import ConflictException, NotFoundException, UnauthorizedException

logger = logging.getLogger(__name__)


class AuditService:
    """Admin views over the audit trail and the notifications outbox."""

    def __init__(self, repository: AuditRepository) -> None:
        self.repository = repository

    @staticmethod
    def _ensure_admin(actor: User) -> None:
        if actor.role.name != RoleEnum.ADMIN:
            raise UnauthorizedException("Only admin can view audit data")

    async def list_logs(
        self,
        actor: User,
        entity_type: str | None,
        limit: int,
        offset: int,
        entity_id: str | None = None,
    ) -> tuple[list[AuditLog], int]:
        self._ensure_admin(actor)
        return await self.repository.list_audit_logs(
            limit=limit,
            offset=offset,
            entity_type=entity_type,
            entity_id=entity_id,
        )

    async def list_pending_outbox(self, actor: User, limit: int) -> list[OutboxEvent]:
        self._ensure_admin(actor)
        return await self.repository.list_pending_outbox(limit)

    async def outbox_summary(self, actor: User, max_retries: int) -> dict:
        """Outbox counts per status plus events that ran out of retries."""
        self._ensure_admin(actor)
        counts = await self.repository.count_outbox_by_status()
        return {
            "by_status": {status.value: counts.get(status, 0) for status in OutboxStatusEnum},
            "dead_letter": await self.repository.count_dead_letter_outbox(max_retries),
        }

    async def replay_outbox_event(self, actor: User, event_id: UUID) -> OutboxEvent:
        """Give a failed event a fresh retry budget; recipients already notified are skipped."""
        self._ensure_admin(actor)
        event = await self.repository.get_outbox_event(event_id)
        if event is None:
            raise NotFoundException("Outbox event not found")
        if event.status != OutboxStatusEnum.FAILED:
            raise ConflictException(f"Only failed events can be replayed, event is {event.status}")

        await self.repository.mark_outbox_pending(event, reset_retries=True)
        await self.repository.create_audit_log(
            actor_id=actor.id,
            action="outbox.replayed",
            entity_type="outbox_event",
            entity_id=str(event.id),
            payload={"event_type": event.event_type},
        )
        logger.info("Outbox event %s (%s) replayed by %s", event.id, event.event_type, actor.id)
        return event


async def get_audit_service(session: AsyncSession = Depends(get_db_session)) -> AuditService:
    return AuditService(AuditRepository(session))
