"""Booking business logic layer."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from uuid import UUID

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.database import get_db_session
from app.core.enums import ConfirmationRoleEnum, RoleEnum, SessionStatusEnum
from app.core.metrics import BOOKING_CONFLICTS_TOTAL
from app.modules.audit.repository import AuditRepository
from app.modules.availability.engine import (
    booked_session_from_instants,
    count_sessions_per_week,
    fits_availability,
    iso_week_key,
    overlaps,
    template_from_json,
    time_to_minutes,
)
from app.modules.availability.repository import AvailabilityRepository
from app.modules.availability.service import business_hours, load_booked_sessions, resolve_timezone
from app.modules.booking.models import TutoringSession
from app.modules.booking.repository import BookingRepository
from app.modules.booking.schemas import SessionCancelRequest, SessionCreate
from app.modules.booking.state_machine import (
    CONFIRMABLE_SESSION_STATUSES,
    ensure_transition,
)
from app.modules.identity.models import User
from app.modules.identity.repository import IdentityRepository
from app.modules.notifications.service import NotificationDispatcher, build_notification_dispatcher
from app.modules.tutors.repository import TutorsRepository
from app.shared.exceptions import (
    BusinessRuleException,
    ConflictException,
    NotFoundException,
    UnauthorizedException,
)
from app.shared.utils import ensure_utc, utc_now

settings = get_settings()
logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ConfirmationResult:
    both_confirmed: bool
    session: TutoringSession


class BookingService:
    """Session lifecycle: slot selection, confirmation, cancellation."""

    def __init__(
        self,
        booking_repository: BookingRepository,
        availability_repository: AvailabilityRepository,
        tutors_repository: TutorsRepository,
        identity_repository: IdentityRepository,
        audit_repository: AuditRepository,
        notifier: NotificationDispatcher,
    ) -> None:
        self.booking_repository = booking_repository
        self.availability_repository = availability_repository
        self.tutors_repository = tutors_repository
        self.identity_repository = identity_repository
        self.audit_repository = audit_repository
        self.notifier = notifier

    def _validate_actor_access(self, tutoring_session: TutoringSession, actor: User) -> None:
        if actor.role.name == RoleEnum.ADMIN:
            return
        if actor.role.name == RoleEnum.STUDENT and tutoring_session.student_id == actor.id:
            return
        if actor.role.name == RoleEnum.TUTOR and tutoring_session.tutor_id == actor.id:
            return
        raise UnauthorizedException("You cannot manage this session")

    async def _get_session(self, session_id: UUID, *, for_update: bool = False) -> TutoringSession:
        if for_update:
            tutoring_session = await self.booking_repository.get_session_for_update(session_id)
        else:
            tutoring_session = await self.booking_repository.get_session_by_id(session_id)
        if tutoring_session is None:
            raise NotFoundException("Session not found")
        return tutoring_session

    async def select_slot(self, payload: SessionCreate, actor: User) -> TutoringSession:
        """Re-validate the requested time and create a pending session."""
        if actor.role.name != RoleEnum.STUDENT:
            raise UnauthorizedException("Only students can book sessions")

        start_at = ensure_utc(payload.start_at)
        end_at = ensure_utc(payload.end_at)
        duration_minutes = int((end_at - start_at).total_seconds() // 60)
        if (
            duration_minutes <= 0
            or (end_at - start_at).total_seconds() % 60
            or duration_minutes % settings.booking_slot_minutes
        ):
            raise BusinessRuleException(
                f"Session length must be a multiple of {settings.booking_slot_minutes} minutes",
            )
        if duration_minutes > settings.booking_max_duration_minutes:
            raise BusinessRuleException(
                f"Sessions cannot exceed {settings.booking_max_duration_minutes} minutes",
            )
        if start_at < utc_now() + timedelta(minutes=settings.booking_buffer_minutes):
            raise BusinessRuleException(
                f"Sessions must be booked at least {settings.booking_buffer_minutes} minutes ahead",
            )

        # Row lock on the tutor profile serializes concurrent bookings of one tutor.
        profile = await self.tutors_repository.lock_profile_by_user_id(payload.tutor_id)
        if profile is None:
            raise NotFoundException("Tutor profile not found")

        stored = await self.availability_repository.get_template_by_tutor_id(payload.tutor_id)
        if stored is None:
            raise BusinessRuleException("Tutor has no availability")
        template = template_from_json(stored.windows)

        tutor = await self.identity_repository.get_user_by_id(payload.tutor_id)
        tz = resolve_timezone(tutor.timezone if tutor is not None else None)
        requested = booked_session_from_instants(
            session_id=None,
            tutor_id=payload.tutor_id,
            student_id=actor.id,
            start_at=start_at,
            end_at=end_at,
            tz=tz,
        )
        if end_at.astimezone(tz).date() != requested.day:
            raise BusinessRuleException("Sessions cannot span midnight")

        open_from, open_until = business_hours()
        if requested.start < open_from or requested.end > open_until:
            raise BusinessRuleException("Requested time is outside business hours")
        if not fits_availability(template, requested.day, requested.start, requested.end):
            raise BusinessRuleException("Requested time is outside the tutor's availability")

        booked = await load_booked_sessions(
            self.booking_repository,
            payload.tutor_id,
            requested.day,
            requested.day,
            tz,
        )
        if profile.max_weekly_sessions is not None:
            week_count = count_sessions_per_week(booked, payload.tutor_id)[iso_week_key(requested.day)]
            if week_count >= profile.max_weekly_sessions:
                raise BusinessRuleException("Tutor has reached the weekly session limit")

        requested_range = (time_to_minutes(requested.start), time_to_minutes(requested.end))
        for existing in booked:
            if existing.day == requested.day and overlaps(
                *requested_range,
                time_to_minutes(existing.start),
                time_to_minutes(existing.end),
            ):
                BOOKING_CONFLICTS_TOTAL.inc()
                raise ConflictException("Time slot is no longer available")

        try:
            tutoring_session = await self.booking_repository.create_session(
                student_id=actor.id,
                tutor_id=payload.tutor_id,
                start_at=start_at,
                end_at=end_at,
                course_id=payload.course_id,
            )
        except ConflictException:
            BOOKING_CONFLICTS_TOTAL.inc()
            raise

        await self.audit_repository.create_audit_log(
            actor_id=actor.id,
            action="booking.session.create",
            entity_type="tutoring_session",
            entity_id=str(tutoring_session.id),
            payload={
                "tutor_id": str(payload.tutor_id),
                "start_at": start_at.isoformat(),
                "end_at": end_at.isoformat(),
            },
        )
        logger.info("Session %s booked with tutor %s", tutoring_session.id, payload.tutor_id)
        await self.notifier.notify_booking_created(tutoring_session)
        return tutoring_session

    async def confirm_completion(
        self,
        session_id: UUID,
        role: ConfirmationRoleEnum,
        actor: User,
    ) -> ConfirmationResult:
        """Record one party's confirmation; complete the session once both agree."""
        tutoring_session = await self._get_session(session_id, for_update=True)

        if actor.role.name != RoleEnum.ADMIN:
            owner_id = (
                tutoring_session.student_id
                if role == ConfirmationRoleEnum.STUDENT
                else tutoring_session.tutor_id
            )
            if actor.role.name.value != role.value or actor.id != owner_id:
                raise UnauthorizedException("You cannot confirm this session for that role")

        if tutoring_session.status == SessionStatusEnum.COMPLETED:
            return ConfirmationResult(both_confirmed=True, session=tutoring_session)
        if tutoring_session.status not in CONFIRMABLE_SESSION_STATUSES:
            raise BusinessRuleException(
                f"Session in status {tutoring_session.status.value} cannot be confirmed",
            )

        flag = "student_confirmed" if role == ConfirmationRoleEnum.STUDENT else "tutor_confirmed"
        if getattr(tutoring_session, flag):
            return ConfirmationResult(
                both_confirmed=tutoring_session.student_confirmed and tutoring_session.tutor_confirmed,
                session=tutoring_session,
            )

        setattr(tutoring_session, flag, True)
        both_confirmed = tutoring_session.student_confirmed and tutoring_session.tutor_confirmed
        if both_confirmed:
            ensure_transition(tutoring_session.status, SessionStatusEnum.COMPLETED)
            tutoring_session.status = SessionStatusEnum.COMPLETED
            tutoring_session.completion_date = utc_now()
        await self.booking_repository.save(tutoring_session)

        await self.audit_repository.create_audit_log(
            actor_id=actor.id,
            action="booking.session.confirm",
            entity_type="tutoring_session",
            entity_id=str(tutoring_session.id),
            payload={"role": role.value, "both_confirmed": both_confirmed},
        )
        if both_confirmed:
            await self.audit_repository.create_outbox_event(
                aggregate_type="session",
                aggregate_id=str(tutoring_session.id),
                event_type="session.completed",
                payload={
                    "session_id": str(tutoring_session.id),
                    "student_id": str(tutoring_session.student_id),
                    "tutor_id": str(tutoring_session.tutor_id),
                    "completion_date": tutoring_session.completion_date.isoformat(),
                },
            )
            logger.info("Session %s completed", tutoring_session.id)

        return ConfirmationResult(both_confirmed=both_confirmed, session=tutoring_session)

    async def auto_confirm_session(self, session_id: UUID, actor: User) -> ConfirmationResult:
        """Confirm for both parties at once (admin only)."""
        if actor.role.name != RoleEnum.ADMIN:
            raise UnauthorizedException("Only admin can auto-confirm sessions")
        await self.confirm_completion(session_id, ConfirmationRoleEnum.STUDENT, actor)
        return await self.confirm_completion(session_id, ConfirmationRoleEnum.TUTOR, actor)

    async def start_session(self, session_id: UUID, actor: User) -> TutoringSession:
        """Move a scheduled session to in progress."""
        tutoring_session = await self._get_session(session_id, for_update=True)
        if actor.role.name not in (RoleEnum.ADMIN, RoleEnum.TUTOR):
            raise UnauthorizedException("Only the tutor can start a session")
        self._validate_actor_access(tutoring_session, actor)

        ensure_transition(tutoring_session.status, SessionStatusEnum.IN_PROGRESS)
        tutoring_session.status = SessionStatusEnum.IN_PROGRESS
        return await self.booking_repository.save(tutoring_session)

    async def cancel_session(
        self,
        session_id: UUID,
        payload: SessionCancelRequest,
        actor: User,
    ) -> TutoringSession:
        """Cancel a session that has not finished yet."""
        tutoring_session = await self._get_session(session_id, for_update=True)
        self._validate_actor_access(tutoring_session, actor)

        ensure_transition(tutoring_session.status, SessionStatusEnum.CANCELLED)
        tutoring_session.status = SessionStatusEnum.CANCELLED
        tutoring_session.cancelled_at = utc_now()
        tutoring_session.cancellation_reason = payload.reason
        await self.booking_repository.save(tutoring_session)

        await self.audit_repository.create_outbox_event(
            aggregate_type="session",
            aggregate_id=str(tutoring_session.id),
            event_type="session.cancelled",
            payload={
                "session_id": str(tutoring_session.id),
                "student_id": str(tutoring_session.student_id),
                "tutor_id": str(tutoring_session.tutor_id),
                "reason": payload.reason,
            },
        )
        return tutoring_session

    async def get_session(self, session_id: UUID, actor: User) -> TutoringSession:
        tutoring_session = await self._get_session(session_id)
        self._validate_actor_access(tutoring_session, actor)
        return tutoring_session

    async def list_sessions(
        self,
        actor: User,
        limit: int,
        offset: int,
    ) -> tuple[list[TutoringSession], int]:
        """List sessions for actor according to role."""
        return await self.booking_repository.list_sessions(actor.id, actor.role.name, limit, offset)


async def get_booking_service(session: AsyncSession = Depends(get_db_session)) -> BookingService:
    """Dependency provider for booking service."""
    return BookingService(
        booking_repository=BookingRepository(session),
        availability_repository=AvailabilityRepository(session),
        tutors_repository=TutorsRepository(session),
        identity_repository=IdentityRepository(session),
        audit_repository=AuditRepository(session),
        notifier=build_notification_dispatcher(session),
    )
