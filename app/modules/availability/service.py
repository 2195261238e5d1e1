"""Availability business logic layer."""

from __future__ import annotations

import logging
from datetime import date, time, timedelta, tzinfo
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fastapi import Depends
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.database import get_db_session
from app.core.enums import RoleEnum
from app.modules.audit.repository import AuditRepository
from app.modules.availability.engine import (
    BookedSession,
    Slot,
    WeeklyTemplate,
    booked_session_from_instants,
    generate_slots,
    iso_week_bounds,
    localize,
    parse_clock,
    template_from_json,
)
from app.modules.availability.models import AvailabilityTemplate
from app.modules.availability.repository import AvailabilityRepository
from app.modules.availability.schemas import AvailabilityTemplateUpdate
from app.modules.booking.repository import BookingRepository
from app.modules.identity.models import User
from app.modules.identity.repository import IdentityRepository
from app.modules.tutors.repository import TutorsRepository
from app.shared.exceptions import NotFoundException, UnauthorizedException, ValidationException
from app.shared.utils import utc_now

settings = get_settings()
logger = logging.getLogger(__name__)


def resolve_timezone(name: str | None) -> tzinfo:
    """Return the IANA zone for a user, falling back to UTC for unknown names."""
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r, using UTC", name)
        return ZoneInfo("UTC")


def business_hours() -> tuple[time, time]:
    return parse_clock(settings.business_hours_start), parse_clock(settings.business_hours_end)


async def load_booked_sessions(
    booking_repository: BookingRepository,
    tutor_id: UUID,
    first_day: date,
    last_day: date,
    tz: tzinfo,
) -> list[BookedSession]:
    """Non-cancelled sessions of the tutor covering whole ISO weeks around the range."""
    week_start, _ = iso_week_bounds(first_day)
    _, week_end = iso_week_bounds(last_day)
    sessions = await booking_repository.list_active_sessions_for_tutor(
        tutor_id,
        from_at=localize(week_start, time(0, 0), tz),
        to_at=localize(week_end, time(0, 0), tz),
    )
    return [
        booked_session_from_instants(
            session_id=session.id,
            tutor_id=session.tutor_id,
            student_id=session.student_id,
            start_at=session.start_at,
            end_at=session.end_at,
            tz=tz,
        )
        for session in sessions
    ]


class AvailabilityService:
    """Availability domain service."""

    def __init__(
        self,
        repository: AvailabilityRepository,
        booking_repository: BookingRepository,
        tutors_repository: TutorsRepository,
        identity_repository: IdentityRepository,
        audit_repository: AuditRepository,
    ) -> None:
        self.repository = repository
        self.booking_repository = booking_repository
        self.tutors_repository = tutors_repository
        self.identity_repository = identity_repository
        self.audit_repository = audit_repository

    async def get_template(self, tutor_id: UUID) -> AvailabilityTemplate:
        """Return stored template of a tutor."""
        template = await self.repository.get_template_by_tutor_id(tutor_id)
        if template is None:
            raise NotFoundException("Availability template not found")
        return template

    async def update_template(
        self,
        tutor_id: UUID,
        payload: AvailabilityTemplateUpdate | dict,
        actor: User,
    ) -> AvailabilityTemplate:
        """Validate and replace the weekly template of a tutor."""
        if actor.role.name != RoleEnum.ADMIN and actor.id != tutor_id:
            raise UnauthorizedException("Only admin or the tutor can change availability")

        if not isinstance(payload, AvailabilityTemplateUpdate):
            try:
                payload = AvailabilityTemplateUpdate.model_validate(payload)
            except ValidationError as exc:
                raise ValidationException(f"Invalid availability template: {exc}") from exc

        profile = await self.tutors_repository.get_profile_by_user_id(tutor_id)
        if profile is None:
            raise NotFoundException("Tutor profile not found")

        windows = {
            weekday: [window.model_dump() for window in day_windows]
            for weekday, day_windows in payload.windows.items()
        }
        template = await self.repository.save_template(tutor_id, windows)
        await self.audit_repository.create_audit_log(
            actor_id=actor.id,
            action="availability.template.update",
            entity_type="availability_template",
            entity_id=str(template.id),
            payload={"tutor_id": str(tutor_id), "windows": windows},
        )
        return template

    async def get_slots(self, tutor_id: UUID, start_date: date, num_days: int) -> list[Slot]:
        """Generate bookable and busy slots for a tutor."""
        profile = await self.tutors_repository.get_profile_by_user_id(tutor_id)
        if profile is None:
            raise NotFoundException("Tutor profile not found")

        stored = await self.repository.get_template_by_tutor_id(tutor_id)
        if stored is None or num_days <= 0:
            return []
        template: WeeklyTemplate = template_from_json(stored.windows)

        tutor = await self.identity_repository.get_user_by_id(tutor_id)
        tz = resolve_timezone(tutor.timezone if tutor is not None else None)

        last_day = start_date + timedelta(days=num_days - 1)
        booked = await load_booked_sessions(self.booking_repository, tutor_id, start_date, last_day, tz)

        return generate_slots(
            template,
            booked,
            start_date,
            num_days,
            tutor_id=tutor_id,
            now=utc_now(),
            weekly_cap=profile.max_weekly_sessions,
            buffer_minutes=settings.booking_buffer_minutes,
            slot_minutes=settings.booking_slot_minutes,
            business_hours=business_hours(),
            tz=tz,
        )


async def get_availability_service(session: AsyncSession = Depends(get_db_session)) -> AvailabilityService:
    """Dependency provider for availability service."""
    return AvailabilityService(
        repository=AvailabilityRepository(session),
        booking_repository=BookingRepository(session),
        tutors_repository=TutorsRepository(session),
        identity_repository=IdentityRepository(session),
        audit_repository=AuditRepository(session),
    )
