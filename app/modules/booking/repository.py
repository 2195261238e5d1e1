"""Booking repository layer."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import Select, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enums import RoleEnum, SessionStatusEnum
from app.modules.booking.models import TutoringSession
from app.shared.exceptions import ConflictException
from app.shared.pagination import fetch_page


class BookingRepository:
    """DB operations for booking domain."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create_session(
        self,
        student_id: UUID,
        tutor_id: UUID,
        start_at: datetime,
        end_at: datetime,
        course_id: UUID | None,
    ) -> TutoringSession:
        tutoring_session = TutoringSession(
            student_id=student_id,
            tutor_id=tutor_id,
            course_id=course_id,
            start_at=start_at,
            end_at=end_at,
            status=SessionStatusEnum.PENDING,
        )
        try:
            async with self.session.begin_nested():
                self.session.add(tutoring_session)
                await self.session.flush()
        except IntegrityError as exc:
            raise ConflictException("Time slot is no longer available") from exc
        return tutoring_session

    async def get_session_by_id(self, session_id: UUID) -> TutoringSession | None:
        stmt = select(TutoringSession).where(TutoringSession.id == session_id)
        return await self.session.scalar(stmt)

    async def get_session_for_update(self, session_id: UUID) -> TutoringSession | None:
        stmt = select(TutoringSession).where(TutoringSession.id == session_id).with_for_update()
        return await self.session.scalar(stmt)

    async def list_active_sessions_for_tutor(
        self,
        tutor_id: UUID,
        *,
        from_at: datetime,
        to_at: datetime,
    ) -> list[TutoringSession]:
        stmt = (
            select(TutoringSession)
            .where(
                TutoringSession.tutor_id == tutor_id,
                TutoringSession.status != SessionStatusEnum.CANCELLED,
                TutoringSession.start_at < to_at,
                TutoringSession.end_at > from_at,
            )
            .order_by(TutoringSession.start_at.asc())
        )
        return (await self.session.scalars(stmt)).all()

    async def list_sessions(
        self,
        user_id: UUID,
        role_name: RoleEnum,
        limit: int,
        offset: int,
    ) -> tuple[list[TutoringSession], int]:
        base_stmt: Select[tuple[TutoringSession]] = select(TutoringSession)

        if role_name == RoleEnum.STUDENT:
            base_stmt = base_stmt.where(TutoringSession.student_id == user_id)
        elif role_name == RoleEnum.TUTOR:
            base_stmt = base_stmt.where(TutoringSession.tutor_id == user_id)

        return await fetch_page(self.session, base_stmt, TutoringSession.start_at.desc(), limit=limit, offset=offset)

    async def save(self, tutoring_session: TutoringSession) -> TutoringSession:
        await self.session.flush()
        return tutoring_session
