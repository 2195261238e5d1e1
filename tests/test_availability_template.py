from __future__ import annotations

from datetime import UTC, date, datetime, time
from types import SimpleNamespace
from uuid import UUID, uuid4

import pytest
from pydantic import ValidationError

import app.modules.availability.service as availability_service_module
from app.core.enums import RoleEnum
from app.modules.availability.schemas import AvailabilityTemplateUpdate
from app.modules.availability.service import AvailabilityService
from app.shared.exceptions import NotFoundException, UnauthorizedException, ValidationException


class FakeAvailabilityRepository:
    def __init__(self, templates: dict[UUID, dict] | None = None) -> None:
        self.templates = templates or {}

    async def get_template_by_tutor_id(self, tutor_id: UUID) -> SimpleNamespace | None:
        windows = self.templates.get(tutor_id)
        if windows is None:
            return None
        return SimpleNamespace(id=uuid4(), tutor_id=tutor_id, windows=windows)

    async def save_template(self, tutor_id: UUID, windows: dict) -> SimpleNamespace:
        self.templates[tutor_id] = windows
        return SimpleNamespace(id=uuid4(), tutor_id=tutor_id, windows=windows)


class FakeBookingRepository:
    def __init__(self, sessions: list[SimpleNamespace] | None = None) -> None:
        self.sessions = sessions or []

    async def list_active_sessions_for_tutor(
        self,
        tutor_id: UUID,
        *,
        from_at: datetime,
        to_at: datetime,
    ) -> list[SimpleNamespace]:
        return [
            item
            for item in self.sessions
            if item.tutor_id == tutor_id and item.start_at < to_at and item.end_at > from_at
        ]


class FakeTutorsRepository:
    def __init__(self, profiles: dict[UUID, SimpleNamespace]) -> None:
        self.profiles = profiles

    async def get_profile_by_user_id(self, user_id: UUID) -> SimpleNamespace | None:
        return self.profiles.get(user_id)


class FakeIdentityRepository:
    def __init__(self, users: dict[UUID, SimpleNamespace]) -> None:
        self.users = users

    async def get_user_by_id(self, user_id: UUID) -> SimpleNamespace | None:
        return self.users.get(user_id)


class FakeAuditRepository:
    def __init__(self) -> None:
        self.logs: list[dict] = []

    async def create_audit_log(self, **kwargs) -> None:
        self.logs.append(kwargs)


def make_actor(role: RoleEnum, user_id: UUID | None = None) -> SimpleNamespace:
    return SimpleNamespace(id=user_id or uuid4(), role=SimpleNamespace(name=role))


def make_service(
    tutor_id: UUID,
    *,
    templates: dict[UUID, dict] | None = None,
    sessions: list[SimpleNamespace] | None = None,
    max_weekly_sessions: int | None = None,
    timezone: str = "UTC",
) -> tuple[AvailabilityService, FakeAvailabilityRepository, FakeAuditRepository]:
    repository = FakeAvailabilityRepository(templates)
    audit = FakeAuditRepository()
    service = AvailabilityService(
        repository=repository,  # type: ignore[arg-type]
        booking_repository=FakeBookingRepository(sessions),  # type: ignore[arg-type]
        tutors_repository=FakeTutorsRepository(
            {tutor_id: SimpleNamespace(user_id=tutor_id, max_weekly_sessions=max_weekly_sessions)},
        ),  # type: ignore[arg-type]
        identity_repository=FakeIdentityRepository(
            {tutor_id: SimpleNamespace(id=tutor_id, timezone=timezone)},
        ),  # type: ignore[arg-type]
        audit_repository=audit,  # type: ignore[arg-type]
    )
    return service, repository, audit


def test_template_rejects_overlapping_windows() -> None:
    with pytest.raises(ValidationError):
        AvailabilityTemplateUpdate.model_validate(
            {"windows": {"monday": [{"start": "09:00", "end": "11:00"}, {"start": "10:30", "end": "12:00"}]}},
        )


def test_template_rejects_unknown_weekday_and_bad_clock() -> None:
    with pytest.raises(ValidationError):
        AvailabilityTemplateUpdate.model_validate({"windows": {"funday": [{"start": "09:00", "end": "10:00"}]}})
    with pytest.raises(ValidationError):
        AvailabilityTemplateUpdate.model_validate({"windows": {"monday": [{"start": "9am", "end": "10:00"}]}})


def test_template_rejects_windows_outside_business_hours() -> None:
    with pytest.raises(ValidationError):
        AvailabilityTemplateUpdate.model_validate({"windows": {"monday": [{"start": "05:00", "end": "07:00"}]}})
    with pytest.raises(ValidationError):
        AvailabilityTemplateUpdate.model_validate({"windows": {"monday": [{"start": "12:00", "end": "12:00"}]}})


def test_template_normalizes_weekdays_and_sorts_windows() -> None:
    payload = AvailabilityTemplateUpdate.model_validate(
        {"windows": {"Monday": [{"start": "14:00", "end": "15:00"}, {"start": "09:00", "end": "10:00"}]}},
    )

    assert list(payload.windows) == ["monday"]
    assert [window.start for window in payload.windows["monday"]] == ["09:00", "14:00"]


@pytest.mark.asyncio
async def test_update_template_persists_and_audits() -> None:
    tutor_id = uuid4()
    service, repository, audit = make_service(tutor_id)

    await service.update_template(
        tutor_id,
        {"windows": {"tuesday": [{"start": "08:00", "end": "09:30"}]}},
        make_actor(RoleEnum.TUTOR, tutor_id),
    )

    assert repository.templates[tutor_id] == {"tuesday": [{"start": "08:00", "end": "09:30"}]}
    assert audit.logs[0]["action"] == "availability.template.update"


@pytest.mark.asyncio
async def test_update_template_wraps_validation_errors() -> None:
    tutor_id = uuid4()
    service, _, _ = make_service(tutor_id)

    with pytest.raises(ValidationException):
        await service.update_template(
            tutor_id,
            {"windows": {"monday": [{"start": "10:00", "end": "09:00"}]}},
            make_actor(RoleEnum.ADMIN),
        )


@pytest.mark.asyncio
async def test_update_template_rejects_other_tutors() -> None:
    tutor_id = uuid4()
    service, _, _ = make_service(tutor_id)

    with pytest.raises(UnauthorizedException):
        await service.update_template(tutor_id, {"windows": {}}, make_actor(RoleEnum.TUTOR))


@pytest.mark.asyncio
async def test_get_slots_returns_empty_without_template() -> None:
    tutor_id = uuid4()
    service, _, _ = make_service(tutor_id)

    assert await service.get_slots(tutor_id, date(2026, 10, 19), 7) == []


@pytest.mark.asyncio
async def test_get_slots_requires_tutor_profile() -> None:
    service, _, _ = make_service(uuid4())

    with pytest.raises(NotFoundException):
        await service.get_slots(uuid4(), date(2026, 10, 19), 7)


@pytest.mark.asyncio
async def test_get_slots_marks_booked_time_unavailable(monkeypatch: pytest.MonkeyPatch) -> None:
    tutor_id = uuid4()
    booked = SimpleNamespace(
        id=uuid4(),
        tutor_id=tutor_id,
        student_id=uuid4(),
        start_at=datetime(2026, 10, 19, 10, 0, tzinfo=UTC),
        end_at=datetime(2026, 10, 19, 10, 30, tzinfo=UTC),
    )
    service, _, _ = make_service(
        tutor_id,
        templates={tutor_id: {"monday": [{"start": "09:00", "end": "12:00"}]}},
        sessions=[booked],
    )
    monkeypatch.setattr(
        availability_service_module,
        "utc_now",
        lambda: datetime(2026, 10, 19, 6, 0, tzinfo=UTC),
    )

    slots = await service.get_slots(tutor_id, date(2026, 10, 19), 1)

    assert len(slots) == 6
    assert [slot.start for slot in slots if not slot.available] == [time(10, 0)]
