"""Outbox consumer that materializes domain events into notifications."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from app.core.enums import NotificationStatusEnum
from app.modules.audit.models import OutboxEvent
from app.modules.audit.repository import AuditRepository
from app.modules.notifications.repository import NotificationsRepository
from app.shared.utils import utc_now


@dataclass(slots=True)
class NotificationMessage:
    user_id: UUID
    title: str
    body: str
    channel: str = "email"


@dataclass(frozen=True, slots=True)
class EventTemplate:
    title: str
    body: str
    recipient_keys: tuple[str, ...]


EVENT_TEMPLATES: dict[str, EventTemplate] = {
    "session.booked": EventTemplate(
        title="Session booked",
        body="Session {session_id} was booked and is awaiting payment.",
        recipient_keys=("student_id", "tutor_id"),
    ),
    "session.cancelled": EventTemplate(
        title="Session cancelled",
        body="Session {session_id} was cancelled: {reason}.",
        recipient_keys=("student_id", "tutor_id"),
    ),
    "session.completed": EventTemplate(
        title="Session completed",
        body="Both sides confirmed session {session_id}.",
        recipient_keys=("student_id", "tutor_id"),
    ),
    "payment.succeeded": EventTemplate(
        title="Payment received",
        body="Payment of {amount} {currency} for session {session_id} succeeded.",
        recipient_keys=("student_id", "tutor_id"),
    ),
    "transfer.completed": EventTemplate(
        title="Payout sent",
        body="Your payout of {amount} for session {session_id} was sent.",
        recipient_keys=("tutor_id",),
    ),
}


class NotificationsOutboxWorker:
    """Process outbox events and create user notifications."""

    def __init__(
        self,
        audit_repository: AuditRepository,
        notifications_repository: NotificationsRepository,
        *,
        batch_size: int = 100,
        max_retries: int = 5,
        base_backoff_seconds: int = 30,
        max_backoff_seconds: int = 300,
        now_provider=utc_now,
    ) -> None:
        self.audit_repository = audit_repository
        self.notifications_repository = notifications_repository
        self.batch_size = batch_size
        self.max_retries = max_retries
        self.base_backoff_seconds = base_backoff_seconds
        self.max_backoff_seconds = max_backoff_seconds
        self.now_provider = now_provider

    async def run_once(self) -> dict[str, int]:
        """Run one processing cycle."""
        stats = {"requeued": 0, "processed": 0, "failed": 0, "dispatched": 0, "skipped": 0}
        stats["requeued"] = await self._requeue_retryable_failed_events()

        events = await self.audit_repository.list_pending_outbox(limit=self.batch_size, lock=True)
        for event in events:
            try:
                messages = await self._build_messages(event)
                already_notified = await self.notifications_repository.list_recipients_for_event(event.id)
                for message in messages:
                    if message.user_id in already_notified:
                        stats["skipped"] += 1
                        continue
                    notification = await self.notifications_repository.create_notification(
                        user_id=message.user_id,
                        channel=message.channel,
                        title=message.title,
                        body=message.body,
                        source_event_id=event.id,
                    )
                    await self.notifications_repository.set_status(
                        notification,
                        NotificationStatusEnum.SENT,
                        self.now_provider(),
                    )
                    stats["dispatched"] += 1

                await self.audit_repository.mark_outbox_processed(event, self.now_provider())
                stats["processed"] += 1
            except Exception as exc:
                await self.audit_repository.mark_outbox_failed(event, str(exc))
                stats["failed"] += 1
        return stats

    async def _requeue_retryable_failed_events(self) -> int:
        now = self.now_provider()
        failed_events = await self.audit_repository.list_failed_outbox(
            limit=self.batch_size,
            max_retries=self.max_retries,
        )
        requeued = 0
        for event in failed_events:
            if self._is_backoff_elapsed(event, now):
                await self.audit_repository.mark_outbox_pending(event)
                requeued += 1
        return requeued

    def _is_backoff_elapsed(self, event: OutboxEvent, now: datetime) -> bool:
        retries = max(event.retries, 1)
        backoff_seconds = min(
            self.max_backoff_seconds,
            self.base_backoff_seconds * (2 ** (retries - 1)),
        )
        last_attempt_at = event.updated_at or event.occurred_at
        return now >= last_attempt_at + timedelta(seconds=backoff_seconds)

    async def _build_messages(self, event: OutboxEvent) -> list[NotificationMessage]:
        payload = event.payload or {}
        template = EVENT_TEMPLATES.get(event.event_type)
        if template is None:
            return []

        recipients = self._unique_recipients(
            *(self._optional_uuid(payload, key) for key in template.recipient_keys),
        )
        if not recipients:
            raise ValueError(f"No recipients in {event.event_type} payload")

        body = template.body.format(
            session_id=payload.get("session_id", "unknown"),
            amount=payload.get("amount", "unknown"),
            currency=str(payload.get("currency", "")).upper(),
            reason=payload.get("reason") or "no reason given",
        )
        return [
            NotificationMessage(user_id=user_id, title=template.title, body=body)
            for user_id in recipients
        ]

    @staticmethod
    def _optional_uuid(payload: dict, key: str) -> UUID | None:
        value = payload.get(key)
        if value is None:
            return None
        return UUID(str(value))

    @staticmethod
    def _unique_recipients(*recipients: UUID | None) -> list[UUID]:
        unique: list[UUID] = []
        seen: set[UUID] = set()
        for recipient in recipients:
            if recipient is not None and recipient not in seen:
                unique.append(recipient)
                seen.add(recipient)
        return unique
