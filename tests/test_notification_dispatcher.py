from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from types import SimpleNamespace
from uuid import UUID, uuid4

import pytest

from app.core.enums import RoleEnum
from app.modules.notifications.service import NotificationDispatcher


class FakeAuditRepository:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.events: list[dict] = []
        self.savepoints = 0
        self.rolled_back = 0

    @asynccontextmanager
    async def savepoint(self) -> AsyncIterator[None]:
        self.savepoints += 1
        try:
            yield
        except Exception:
            self.rolled_back += 1
            raise

    async def create_outbox_event(
        self,
        aggregate_type: str,
        aggregate_id: str,
        event_type: str,
        payload: dict,
    ) -> None:
        if self.fail:
            raise RuntimeError("outbox table is locked")
        self.events.append({"event_type": event_type, "payload": payload})


class FakeNotificationsRepository:
    def __init__(self) -> None:
        self.created: list[dict] = []

    async def create_notification(self, user_id: UUID, channel: str, title: str, body: str) -> SimpleNamespace:
        self.created.append({"user_id": user_id, "channel": channel, "title": title, "body": body})
        return SimpleNamespace(id=uuid4())


class FakeIdentityRepository:
    def __init__(self, admins: list[SimpleNamespace]) -> None:
        self.admins = admins

    async def list_active_users_by_role(self, role: RoleEnum) -> list[SimpleNamespace]:
        assert role == RoleEnum.ADMIN
        return self.admins


def make_dispatcher(
    *,
    admins: list[SimpleNamespace] | None = None,
    fail_outbox: bool = False,
) -> tuple[NotificationDispatcher, FakeAuditRepository, FakeNotificationsRepository]:
    audit = FakeAuditRepository(fail=fail_outbox)
    notifications = FakeNotificationsRepository()
    dispatcher = NotificationDispatcher(
        audit_repository=audit,  # type: ignore[arg-type]
        notifications_repository=notifications,  # type: ignore[arg-type]
        identity_repository=FakeIdentityRepository(admins or []),  # type: ignore[arg-type]
    )
    return dispatcher, audit, notifications


def make_transfer(amount: int) -> SimpleNamespace:
    return SimpleNamespace(id=uuid4(), session_id=uuid4(), tutor_id=uuid4(), amount=amount, retry_count=3)


@pytest.mark.asyncio
async def test_booking_notification_is_enqueued() -> None:
    dispatcher, audit, _ = make_dispatcher()
    tutoring_session = SimpleNamespace(id=uuid4(), student_id=uuid4(), tutor_id=uuid4())

    assert await dispatcher.notify_booking_created(tutoring_session) is True
    assert audit.events[0]["event_type"] == "session.booked"
    assert audit.events[0]["payload"]["tutor_id"] == str(tutoring_session.tutor_id)
    assert (audit.savepoints, audit.rolled_back) == (1, 0)


@pytest.mark.asyncio
async def test_failed_booking_notification_only_rolls_back_its_savepoint() -> None:
    dispatcher, audit, _ = make_dispatcher(fail_outbox=True)
    tutoring_session = SimpleNamespace(id=uuid4(), student_id=uuid4(), tutor_id=uuid4())

    assert await dispatcher.notify_booking_created(tutoring_session) is False
    assert (audit.savepoints, audit.rolled_back) == (1, 1)
    assert audit.events == []


@pytest.mark.asyncio
async def test_failed_transfers_are_summarized_for_every_admin() -> None:
    admins = [SimpleNamespace(id=uuid4()), SimpleNamespace(id=uuid4())]
    dispatcher, _, notifications = make_dispatcher(admins=admins)
    transfers = [make_transfer(1_000), make_transfer(2_500)]

    sent = await dispatcher.notify_admin_transfer_failures(transfers)

    assert sent == 2
    assert [item["user_id"] for item in notifications.created] == [admin.id for admin in admins]
    assert notifications.created[0]["title"] == "2 tutor payout(s) need manual attention"
    assert str(transfers[1].id) in notifications.created[0]["body"]


@pytest.mark.asyncio
async def test_escalation_without_admins_raises() -> None:
    dispatcher, _, notifications = make_dispatcher(admins=[])

    with pytest.raises(RuntimeError):
        await dispatcher.notify_admin_transfer_failures([make_transfer(1_000)])
    assert notifications.created == []
    assert await dispatcher.notify_admin_transfer_failures([]) == 0
