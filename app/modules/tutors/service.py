"""Tutors business logic layer."""

from __future__ import annotations

import logging
from uuid import UUID

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db_session
from app.core.enums import RoleEnum
from app.modules.identity.models import User
from app.modules.tutors.models import TutorProfile
from app.modules.tutors.repository import TutorsRepository
from app.modules.tutors.schemas import TutorPayoutUpdate, TutorProfileCreate, TutorProfileUpdate
from app.shared.exceptions import (
    BusinessRuleException,
    ConflictException,
    NotFoundException,
    UnauthorizedException,
)

logger = logging.getLogger(__name__)


class TutorsService:
    """Tutors domain service."""

    def __init__(self, repository: TutorsRepository) -> None:
        self.repository = repository

    async def create_profile(self, payload: TutorProfileCreate, actor: User) -> TutorProfile:
        """Create tutor profile."""
        if actor.role.name != RoleEnum.ADMIN and str(actor.id) != str(payload.user_id):
            raise UnauthorizedException("Only admin or owner can create profile")

        existing = await self.repository.get_profile_by_user_id(payload.user_id)
        if existing is not None:
            raise ConflictException("Tutor profile already exists for user")

        return await self.repository.create_profile(
            user_id=payload.user_id,
            display_name=payload.display_name,
            bio=payload.bio,
            hourly_rate=payload.hourly_rate,
            max_weekly_sessions=payload.max_weekly_sessions,
        )

    async def update_profile(self, profile_id: UUID, payload: TutorProfileUpdate, actor: User) -> TutorProfile:
        """Update tutor profile."""
        profile = await self._get_owned_profile(profile_id, actor)

        changes = payload.model_dump(exclude_unset=True)
        if actor.role.name != RoleEnum.ADMIN and "is_approved" in changes:
            raise UnauthorizedException("Only admin can approve tutor profile")
        if changes.get("display_name", "") is None:
            raise BusinessRuleException("Display name cannot be cleared")
        changes = {
            key: value
            for key, value in changes.items()
            if value is not None or key == "max_weekly_sessions"
        }

        return await self.repository.update_profile(profile, **changes)

    async def update_payout(self, profile_id: UUID, payload: TutorPayoutUpdate, actor: User) -> TutorProfile:
        """Record payout onboarding state; direct payouts require it to be complete."""
        if actor.role.name != RoleEnum.ADMIN:
            raise UnauthorizedException("Only admin can change payout details")

        profile = await self.repository.get_profile_by_id(profile_id)
        if profile is None:
            raise NotFoundException("Tutor profile not found")

        account_id = payload.payout_account_id or profile.payout_account_id
        if payload.payout_onboarding_complete and not account_id:
            raise BusinessRuleException("Payout account id is required to complete onboarding")

        logger.info(
            "Tutor %s payout onboarding set to %s",
            profile.user_id,
            payload.payout_onboarding_complete,
        )
        return await self.repository.update_profile(
            profile,
            payout_account_id=account_id,
            payout_onboarding_complete=payload.payout_onboarding_complete,
        )

    async def get_profile_for_user(self, user_id: UUID) -> TutorProfile:
        """Return the tutor profile of a user."""
        profile = await self.repository.get_profile_by_user_id(user_id)
        if profile is None:
            raise NotFoundException("Tutor profile not found")
        return profile

    async def list_profiles(self, limit: int, offset: int) -> tuple[list[TutorProfile], int]:
        """List tutor profiles."""
        return await self.repository.list_profiles(limit=limit, offset=offset)

    async def _get_owned_profile(self, profile_id: UUID, actor: User) -> TutorProfile:
        profile = await self.repository.get_profile_by_id(profile_id)
        if profile is None:
            raise NotFoundException("Tutor profile not found")
        if actor.role.name != RoleEnum.ADMIN and str(actor.id) != str(profile.user_id):
            raise UnauthorizedException("Only admin or owner can update profile")
        return profile


async def get_tutors_service(session: AsyncSession = Depends(get_db_session)) -> TutorsService:
    """Dependency provider for tutors service."""
    return TutorsService(TutorsRepository(session))
