from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from uuid import UUID, uuid4

import pytest

import app.modules.booking.service as booking_service_module
from app.core.enums import ConfirmationRoleEnum, RoleEnum, SessionPaymentStatusEnum, SessionStatusEnum
from app.modules.booking.schemas import SessionCancelRequest, SessionCreate
from app.modules.booking.service import BookingService
from app.modules.booking.state_machine import can_transition, ensure_transition
from app.shared.exceptions import (
    BusinessRuleException,
    ConflictException,
    NotFoundException,
    UnauthorizedException,
)

NOW = datetime(2026, 10, 19, 6, 0, tzinfo=UTC)
MONDAY_TEMPLATE = {"monday": [{"start": "09:00", "end": "12:00"}]}


@dataclass
class FakeSession:
    id: UUID
    student_id: UUID
    tutor_id: UUID
    start_at: datetime
    end_at: datetime
    course_id: UUID | None = None
    status: SessionStatusEnum = SessionStatusEnum.PENDING
    payment_status: SessionPaymentStatusEnum = SessionPaymentStatusEnum.UNPAID
    student_confirmed: bool = False
    tutor_confirmed: bool = False
    completion_date: datetime | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None


class FakeBookingRepository:
    def __init__(self, sessions: list[FakeSession] | None = None) -> None:
        self.sessions: dict[UUID, FakeSession] = {item.id: item for item in sessions or []}

    async def create_session(
        self,
        student_id: UUID,
        tutor_id: UUID,
        start_at: datetime,
        end_at: datetime,
        course_id: UUID | None,
    ) -> FakeSession:
        for existing in self.sessions.values():
            if (
                existing.tutor_id == tutor_id
                and existing.status != SessionStatusEnum.CANCELLED
                and (existing.start_at, existing.end_at) == (start_at, end_at)
            ):
                raise ConflictException("Time slot is no longer available")
        tutoring_session = FakeSession(
            id=uuid4(),
            student_id=student_id,
            tutor_id=tutor_id,
            start_at=start_at,
            end_at=end_at,
            course_id=course_id,
        )
        self.sessions[tutoring_session.id] = tutoring_session
        return tutoring_session

    async def get_session_by_id(self, session_id: UUID) -> FakeSession | None:
        return self.sessions.get(session_id)

    async def get_session_for_update(self, session_id: UUID) -> FakeSession | None:
        return self.sessions.get(session_id)

    async def list_active_sessions_for_tutor(
        self,
        tutor_id: UUID,
        *,
        from_at: datetime,
        to_at: datetime,
    ) -> list[FakeSession]:
        return [
            item
            for item in self.sessions.values()
            if item.tutor_id == tutor_id
            and item.status != SessionStatusEnum.CANCELLED
            and item.start_at < to_at
            and item.end_at > from_at
        ]

    async def save(self, tutoring_session: FakeSession) -> FakeSession:
        self.sessions[tutoring_session.id] = tutoring_session
        return tutoring_session


class FakeAvailabilityRepository:
    def __init__(self, templates: dict[UUID, dict]) -> None:
        self.templates = templates

    async def get_template_by_tutor_id(self, tutor_id: UUID) -> SimpleNamespace | None:
        windows = self.templates.get(tutor_id)
        return SimpleNamespace(windows=windows) if windows is not None else None


class FakeTutorsRepository:
    def __init__(self, profiles: dict[UUID, SimpleNamespace]) -> None:
        self.profiles = profiles

    async def lock_profile_by_user_id(self, user_id: UUID) -> SimpleNamespace | None:
        return self.profiles.get(user_id)


class FakeIdentityRepository:
    async def get_user_by_id(self, user_id: UUID) -> SimpleNamespace:
        return SimpleNamespace(id=user_id, timezone="UTC")


class FakeAuditRepository:
    def __init__(self) -> None:
        self.logs: list[dict] = []
        self.events: list[dict] = []

    async def create_audit_log(self, **kwargs) -> None:
        self.logs.append(kwargs)

    async def create_outbox_event(
        self,
        aggregate_type: str,
        aggregate_id: str,
        event_type: str,
        payload: dict,
    ) -> None:
        self.events.append({"aggregate_id": aggregate_id, "event_type": event_type, "payload": payload})


class FakeNotifier:
    def __init__(self) -> None:
        self.booked: list[UUID] = []

    async def notify_booking_created(self, tutoring_session: FakeSession) -> bool:
        self.booked.append(tutoring_session.id)
        return True


def make_actor(role: RoleEnum, user_id: UUID | None = None) -> SimpleNamespace:
    return SimpleNamespace(id=user_id or uuid4(), role=SimpleNamespace(name=role))


def make_service(
    tutor_id: UUID,
    *,
    sessions: list[FakeSession] | None = None,
    max_weekly_sessions: int | None = None,
    templates: dict[UUID, dict] | None = None,
) -> tuple[BookingService, FakeBookingRepository, FakeAuditRepository, FakeNotifier]:
    booking_repo = FakeBookingRepository(sessions)
    audit_repo = FakeAuditRepository()
    notifier = FakeNotifier()
    service = BookingService(
        booking_repository=booking_repo,  # type: ignore[arg-type]
        availability_repository=FakeAvailabilityRepository(
            templates if templates is not None else {tutor_id: MONDAY_TEMPLATE},
        ),  # type: ignore[arg-type]
        tutors_repository=FakeTutorsRepository(
            {tutor_id: SimpleNamespace(user_id=tutor_id, max_weekly_sessions=max_weekly_sessions)},
        ),  # type: ignore[arg-type]
        identity_repository=FakeIdentityRepository(),  # type: ignore[arg-type]
        audit_repository=audit_repo,  # type: ignore[arg-type]
        notifier=notifier,  # type: ignore[arg-type]
    )
    return service, booking_repo, audit_repo, notifier


def slot_request(tutor_id: UUID, hour: int, minute: int = 0, minutes: int = 30) -> SessionCreate:
    start_at = datetime(2026, 10, 19, hour, minute, tzinfo=UTC)
    return SessionCreate(tutor_id=tutor_id, start_at=start_at, end_at=start_at + timedelta(minutes=minutes))


@pytest.fixture(autouse=True)
def frozen_clock(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(booking_service_module, "utc_now", lambda: NOW)


@pytest.mark.asyncio
async def test_select_slot_creates_pending_session_and_notifies() -> None:
    tutor_id = uuid4()
    student = make_actor(RoleEnum.STUDENT)
    service, booking_repo, audit_repo, notifier = make_service(tutor_id)

    tutoring_session = await service.select_slot(slot_request(tutor_id, 10), student)

    assert tutoring_session.status == SessionStatusEnum.PENDING
    assert tutoring_session.payment_status == SessionPaymentStatusEnum.UNPAID
    assert tutoring_session.student_id == student.id
    assert notifier.booked == [tutoring_session.id]
    assert audit_repo.logs[0]["action"] == "booking.session.create"
    assert len(booking_repo.sessions) == 1


@pytest.mark.asyncio
async def test_select_slot_accepts_adjacent_slots_as_one_session() -> None:
    tutor_id = uuid4()
    service, _, _, _ = make_service(tutor_id)

    tutoring_session = await service.select_slot(
        slot_request(tutor_id, 10, minutes=90),
        make_actor(RoleEnum.STUDENT),
    )

    assert tutoring_session.end_at - tutoring_session.start_at == timedelta(minutes=90)


@pytest.mark.asyncio
async def test_select_slot_rejects_overlapping_session() -> None:
    tutor_id = uuid4()
    existing = FakeSession(
        id=uuid4(),
        student_id=uuid4(),
        tutor_id=tutor_id,
        start_at=datetime(2026, 10, 19, 10, 0, tzinfo=UTC),
        end_at=datetime(2026, 10, 19, 11, 0, tzinfo=UTC),
    )
    service, booking_repo, _, notifier = make_service(tutor_id, sessions=[existing])

    with pytest.raises(ConflictException):
        await service.select_slot(slot_request(tutor_id, 10, 30), make_actor(RoleEnum.STUDENT))

    assert len(booking_repo.sessions) == 1
    assert notifier.booked == []


class InterleavingBookingRepository(FakeBookingRepository):
    """Yields after the overlap read so concurrent bookings both see a free slot."""

    async def list_active_sessions_for_tutor(self, tutor_id: UUID, **kwargs) -> list[FakeSession]:
        active = await super().list_active_sessions_for_tutor(tutor_id, **kwargs)
        await asyncio.sleep(0)
        return active


@pytest.mark.asyncio
async def test_concurrent_bookings_of_one_slot_create_exactly_one_session() -> None:
    tutor_id = uuid4()
    service, _, _, notifier = make_service(tutor_id)
    booking_repo = InterleavingBookingRepository()
    service.booking_repository = booking_repo  # type: ignore[assignment]

    results = await asyncio.gather(
        service.select_slot(slot_request(tutor_id, 10), make_actor(RoleEnum.STUDENT)),
        service.select_slot(slot_request(tutor_id, 10), make_actor(RoleEnum.STUDENT)),
        return_exceptions=True,
    )

    created = [item for item in results if isinstance(item, FakeSession)]
    conflicts = [item for item in results if isinstance(item, ConflictException)]
    assert len(created) == 1
    assert len(conflicts) == 1
    assert list(booking_repo.sessions) == [created[0].id]
    assert notifier.booked == [created[0].id]


@pytest.mark.asyncio
async def test_cancelled_session_frees_its_slot() -> None:
    tutor_id = uuid4()
    cancelled = FakeSession(
        id=uuid4(),
        student_id=uuid4(),
        tutor_id=tutor_id,
        start_at=datetime(2026, 10, 19, 10, 0, tzinfo=UTC),
        end_at=datetime(2026, 10, 19, 10, 30, tzinfo=UTC),
        status=SessionStatusEnum.CANCELLED,
    )
    service, booking_repo, _, _ = make_service(tutor_id, sessions=[cancelled])

    await service.select_slot(slot_request(tutor_id, 10), make_actor(RoleEnum.STUDENT))

    assert len(booking_repo.sessions) == 2


@pytest.mark.asyncio
async def test_select_slot_rejects_time_outside_availability() -> None:
    tutor_id = uuid4()
    service, _, _, _ = make_service(tutor_id)

    with pytest.raises(BusinessRuleException):
        await service.select_slot(slot_request(tutor_id, 11, 30, minutes=60), make_actor(RoleEnum.STUDENT))


@pytest.mark.asyncio
async def test_select_slot_rejects_time_inside_buffer() -> None:
    tutor_id = uuid4()
    service, _, _, _ = make_service(tutor_id)

    with pytest.raises(BusinessRuleException):
        await service.select_slot(slot_request(tutor_id, 8, 30), make_actor(RoleEnum.STUDENT))


@pytest.mark.asyncio
async def test_select_slot_rejects_misaligned_duration() -> None:
    tutor_id = uuid4()
    service, _, _, _ = make_service(tutor_id)

    with pytest.raises(BusinessRuleException):
        await service.select_slot(slot_request(tutor_id, 10, minutes=45), make_actor(RoleEnum.STUDENT))


@pytest.mark.asyncio
async def test_select_slot_enforces_weekly_cap() -> None:
    tutor_id = uuid4()
    same_week = FakeSession(
        id=uuid4(),
        student_id=uuid4(),
        tutor_id=tutor_id,
        start_at=datetime(2026, 10, 21, 15, 0, tzinfo=UTC),
        end_at=datetime(2026, 10, 21, 16, 0, tzinfo=UTC),
    )
    service, _, _, _ = make_service(tutor_id, sessions=[same_week], max_weekly_sessions=1)

    with pytest.raises(BusinessRuleException):
        await service.select_slot(slot_request(tutor_id, 10), make_actor(RoleEnum.STUDENT))


@pytest.mark.asyncio
async def test_select_slot_requires_student_and_tutor_profile() -> None:
    tutor_id = uuid4()
    service, _, _, _ = make_service(tutor_id)

    with pytest.raises(UnauthorizedException):
        await service.select_slot(slot_request(tutor_id, 10), make_actor(RoleEnum.TUTOR))
    with pytest.raises(NotFoundException):
        await service.select_slot(slot_request(uuid4(), 10), make_actor(RoleEnum.STUDENT))


def make_scheduled_session(tutor_id: UUID, student_id: UUID) -> FakeSession:
    return FakeSession(
        id=uuid4(),
        student_id=student_id,
        tutor_id=tutor_id,
        start_at=datetime(2026, 10, 18, 10, 0, tzinfo=UTC),
        end_at=datetime(2026, 10, 18, 10, 30, tzinfo=UTC),
        status=SessionStatusEnum.SCHEDULED,
        payment_status=SessionPaymentStatusEnum.PAID,
    )


@pytest.mark.asyncio
async def test_session_completes_only_after_both_confirmations() -> None:
    tutor_id, student_id = uuid4(), uuid4()
    tutoring_session = make_scheduled_session(tutor_id, student_id)
    service, _, audit_repo, _ = make_service(tutor_id, sessions=[tutoring_session])

    first = await service.confirm_completion(
        tutoring_session.id,
        ConfirmationRoleEnum.STUDENT,
        make_actor(RoleEnum.STUDENT, student_id),
    )
    assert first.both_confirmed is False
    assert tutoring_session.status == SessionStatusEnum.SCHEDULED

    second = await service.confirm_completion(
        tutoring_session.id,
        ConfirmationRoleEnum.TUTOR,
        make_actor(RoleEnum.TUTOR, tutor_id),
    )
    assert second.both_confirmed is True
    assert tutoring_session.status == SessionStatusEnum.COMPLETED
    assert tutoring_session.completion_date == NOW
    assert [event["event_type"] for event in audit_repo.events] == ["session.completed"]


@pytest.mark.asyncio
async def test_repeated_confirmation_is_a_no_op() -> None:
    tutor_id, student_id = uuid4(), uuid4()
    tutoring_session = make_scheduled_session(tutor_id, student_id)
    service, _, audit_repo, _ = make_service(tutor_id, sessions=[tutoring_session])
    student = make_actor(RoleEnum.STUDENT, student_id)

    await service.confirm_completion(tutoring_session.id, ConfirmationRoleEnum.STUDENT, student)
    again = await service.confirm_completion(tutoring_session.id, ConfirmationRoleEnum.STUDENT, student)

    assert again.both_confirmed is False
    assert len(audit_repo.logs) == 1


@pytest.mark.asyncio
async def test_confirming_completed_session_returns_true_without_changes() -> None:
    tutor_id, student_id = uuid4(), uuid4()
    tutoring_session = make_scheduled_session(tutor_id, student_id)
    tutoring_session.status = SessionStatusEnum.COMPLETED
    tutoring_session.completion_date = NOW - timedelta(days=2)
    service, _, audit_repo, _ = make_service(tutor_id, sessions=[tutoring_session])

    result = await service.confirm_completion(
        tutoring_session.id,
        ConfirmationRoleEnum.TUTOR,
        make_actor(RoleEnum.TUTOR, tutor_id),
    )

    assert result.both_confirmed is True
    assert tutoring_session.completion_date == NOW - timedelta(days=2)
    assert audit_repo.events == []


@pytest.mark.asyncio
async def test_unpaid_session_cannot_be_confirmed() -> None:
    tutor_id, student_id = uuid4(), uuid4()
    pending = FakeSession(
        id=uuid4(),
        student_id=student_id,
        tutor_id=tutor_id,
        start_at=datetime(2026, 10, 18, 10, 0, tzinfo=UTC),
        end_at=datetime(2026, 10, 18, 10, 30, tzinfo=UTC),
    )
    service, _, _, _ = make_service(tutor_id, sessions=[pending])

    with pytest.raises(BusinessRuleException):
        await service.confirm_completion(
            pending.id,
            ConfirmationRoleEnum.STUDENT,
            make_actor(RoleEnum.STUDENT, student_id),
        )


@pytest.mark.asyncio
async def test_confirmation_role_must_match_actor() -> None:
    tutor_id, student_id = uuid4(), uuid4()
    tutoring_session = make_scheduled_session(tutor_id, student_id)
    service, _, _, _ = make_service(tutor_id, sessions=[tutoring_session])

    with pytest.raises(UnauthorizedException):
        await service.confirm_completion(
            tutoring_session.id,
            ConfirmationRoleEnum.TUTOR,
            make_actor(RoleEnum.STUDENT, student_id),
        )


@pytest.mark.asyncio
async def test_admin_auto_confirm_completes_session() -> None:
    tutor_id, student_id = uuid4(), uuid4()
    tutoring_session = make_scheduled_session(tutor_id, student_id)
    service, _, _, _ = make_service(tutor_id, sessions=[tutoring_session])

    result = await service.auto_confirm_session(tutoring_session.id, make_actor(RoleEnum.ADMIN))

    assert result.both_confirmed is True
    assert tutoring_session.student_confirmed and tutoring_session.tutor_confirmed


@pytest.mark.asyncio
async def test_cancel_session_records_reason_and_event() -> None:
    tutor_id, student_id = uuid4(), uuid4()
    tutoring_session = make_scheduled_session(tutor_id, student_id)
    service, _, audit_repo, _ = make_service(tutor_id, sessions=[tutoring_session])

    await service.cancel_session(
        tutoring_session.id,
        SessionCancelRequest(reason="Student is ill"),
        make_actor(RoleEnum.STUDENT, student_id),
    )

    assert tutoring_session.status == SessionStatusEnum.CANCELLED
    assert tutoring_session.cancelled_at == NOW
    assert audit_repo.events[0]["event_type"] == "session.cancelled"

    with pytest.raises(ConflictException):
        await service.cancel_session(
            tutoring_session.id,
            SessionCancelRequest(),
            make_actor(RoleEnum.ADMIN),
        )


def test_state_machine_rejects_backward_transitions() -> None:
    assert can_transition(SessionStatusEnum.PENDING, SessionStatusEnum.SCHEDULED)
    assert not can_transition(SessionStatusEnum.PENDING, SessionStatusEnum.COMPLETED)
    assert not can_transition(SessionStatusEnum.COMPLETED, SessionStatusEnum.SCHEDULED)

    with pytest.raises(ConflictException):
        ensure_transition(SessionStatusEnum.CANCELLED, SessionStatusEnum.SCHEDULED)
