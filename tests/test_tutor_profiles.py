from __future__ import annotations

from types import SimpleNamespace
from uuid import UUID, uuid4

import pytest

from app.core.enums import OutboxStatusEnum, RoleEnum
from app.modules.audit.service import AuditService
from app.modules.tutors.schemas import TutorPayoutUpdate, TutorProfileCreate, TutorProfileUpdate
from app.modules.tutors.service import TutorsService
from app.shared.exceptions import (
    BusinessRuleException,
    ConflictException,
    UnauthorizedException,
)


class FakeTutorsRepository:
    def __init__(self) -> None:
        self.profiles: dict[UUID, SimpleNamespace] = {}

    async def create_profile(self, **kwargs) -> SimpleNamespace:
        profile = SimpleNamespace(
            id=uuid4(),
            payout_account_id=None,
            payout_onboarding_complete=False,
            is_approved=False,
            **kwargs,
        )
        self.profiles[profile.id] = profile
        return profile

    async def get_profile_by_id(self, profile_id: UUID) -> SimpleNamespace | None:
        return self.profiles.get(profile_id)

    async def get_profile_by_user_id(self, user_id: UUID) -> SimpleNamespace | None:
        for profile in self.profiles.values():
            if profile.user_id == user_id:
                return profile
        return None

    async def update_profile(self, profile: SimpleNamespace, **changes) -> SimpleNamespace:
        for key, value in changes.items():
            setattr(profile, key, value)
        return profile


class FakeAuditRepository:
    async def count_outbox_by_status(self) -> dict[OutboxStatusEnum, int]:
        return {OutboxStatusEnum.PENDING: 4, OutboxStatusEnum.FAILED: 2}

    async def count_dead_letter_outbox(self, max_retries: int) -> int:
        return 1


def make_actor(role: RoleEnum, user_id: UUID | None = None) -> SimpleNamespace:
    return SimpleNamespace(id=user_id or uuid4(), role=SimpleNamespace(name=role))


async def create_profile(service: TutorsService, tutor_id: UUID) -> SimpleNamespace:
    return await service.create_profile(
        TutorProfileCreate(user_id=tutor_id, display_name="Ada Tutor", max_weekly_sessions=5),
        make_actor(RoleEnum.TUTOR, tutor_id),
    )


@pytest.mark.asyncio
async def test_tutor_creates_own_profile_once() -> None:
    service = TutorsService(FakeTutorsRepository())  # type: ignore[arg-type]
    tutor_id = uuid4()

    profile = await create_profile(service, tutor_id)

    assert profile.max_weekly_sessions == 5
    with pytest.raises(ConflictException):
        await create_profile(service, tutor_id)
    with pytest.raises(UnauthorizedException):
        await service.create_profile(
            TutorProfileCreate(user_id=uuid4(), display_name="Someone Else"),
            make_actor(RoleEnum.TUTOR, tutor_id),
        )


@pytest.mark.asyncio
async def test_only_admin_approves_profiles() -> None:
    service = TutorsService(FakeTutorsRepository())  # type: ignore[arg-type]
    tutor_id = uuid4()
    profile = await create_profile(service, tutor_id)

    with pytest.raises(UnauthorizedException):
        await service.update_profile(profile.id, TutorProfileUpdate(is_approved=True), make_actor(RoleEnum.TUTOR, tutor_id))

    updated = await service.update_profile(profile.id, TutorProfileUpdate(is_approved=True), make_actor(RoleEnum.ADMIN))
    assert updated.is_approved is True


@pytest.mark.asyncio
async def test_payout_onboarding_requires_account_id() -> None:
    service = TutorsService(FakeTutorsRepository())  # type: ignore[arg-type]
    profile = await create_profile(service, uuid4())
    admin = make_actor(RoleEnum.ADMIN)

    with pytest.raises(BusinessRuleException):
        await service.update_payout(profile.id, TutorPayoutUpdate(payout_onboarding_complete=True), admin)

    updated = await service.update_payout(
        profile.id,
        TutorPayoutUpdate(payout_account_id="acct_123", payout_onboarding_complete=True),
        admin,
    )
    assert updated.payout_account_id == "acct_123"
    assert updated.payout_onboarding_complete is True


@pytest.mark.asyncio
async def test_tutors_cannot_change_payout_state() -> None:
    service = TutorsService(FakeTutorsRepository())  # type: ignore[arg-type]
    tutor_id = uuid4()
    profile = await create_profile(service, tutor_id)

    with pytest.raises(UnauthorizedException):
        await service.update_payout(
            profile.id,
            TutorPayoutUpdate(payout_account_id="acct_123", payout_onboarding_complete=True),
            make_actor(RoleEnum.TUTOR, tutor_id),
        )


@pytest.mark.asyncio
async def test_outbox_summary_reports_every_status() -> None:
    service = AuditService(FakeAuditRepository())  # type: ignore[arg-type]

    summary = await service.outbox_summary(make_actor(RoleEnum.ADMIN), max_retries=5)

    assert summary == {"by_status": {"pending": 4, "processed": 0, "failed": 2}, "dead_letter": 1}
    with pytest.raises(UnauthorizedException):
        await service.outbox_summary(make_actor(RoleEnum.STUDENT), max_retries=5)
