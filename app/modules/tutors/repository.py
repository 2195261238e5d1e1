"""Tutors repository layer."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.tutors.models import TutorProfile
from app.shared.pagination import fetch_page


class TutorsRepository:
    """DB operations for tutors domain."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create_profile(
        self,
        user_id: UUID,
        display_name: str,
        bio: str,
        hourly_rate: int,
        max_weekly_sessions: int | None,
    ) -> TutorProfile:
        profile = TutorProfile(
            user_id=user_id,
            display_name=display_name,
            bio=bio,
            hourly_rate=hourly_rate,
            max_weekly_sessions=max_weekly_sessions,
        )
        self.session.add(profile)
        await self.session.flush()
        return profile

    async def get_profile_by_id(self, profile_id: UUID) -> TutorProfile | None:
        stmt = select(TutorProfile).where(TutorProfile.id == profile_id)
        return await self.session.scalar(stmt)

    async def get_profile_by_user_id(self, user_id: UUID) -> TutorProfile | None:
        stmt = select(TutorProfile).where(TutorProfile.user_id == user_id)
        return await self.session.scalar(stmt)

    async def lock_profile_by_user_id(self, user_id: UUID) -> TutorProfile | None:
        """Load the profile row with FOR UPDATE to serialize bookings per tutor."""
        stmt = select(TutorProfile).where(TutorProfile.user_id == user_id).with_for_update()
        return await self.session.scalar(stmt)

    async def list_profiles(self, limit: int, offset: int) -> tuple[list[TutorProfile], int]:
        base_stmt: Select[tuple[TutorProfile]] = select(TutorProfile)
        return await fetch_page(self.session, base_stmt, TutorProfile.created_at.desc(), limit=limit, offset=offset)

    async def update_profile(self, profile: TutorProfile, **changes) -> TutorProfile:
        for key, value in changes.items():
            setattr(profile, key, value)
        await self.session.flush()
        return profile
