"""Tutors API router."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, status

from app.modules.identity.service import get_current_user
from app.modules.tutors.schemas import (
    TutorPayoutUpdate,
    TutorProfileCreate,
    TutorProfileRead,
    TutorProfileUpdate,
)
from app.modules.tutors.service import TutorsService, get_tutors_service
from app.shared.pagination import Page, build_page, get_pagination_params

router = APIRouter(prefix="/tutors", tags=["tutors"])


@router.post("/profiles", response_model=TutorProfileRead, status_code=status.HTTP_201_CREATED)
async def create_profile(
    payload: TutorProfileCreate,
    service: TutorsService = Depends(get_tutors_service),
    current_user=Depends(get_current_user),
) -> TutorProfileRead:
    """Create tutor profile."""
    profile = await service.create_profile(payload, current_user)
    return TutorProfileRead.model_validate(profile)


@router.patch("/profiles/{profile_id}", response_model=TutorProfileRead)
async def update_profile(
    profile_id: UUID,
    payload: TutorProfileUpdate,
    service: TutorsService = Depends(get_tutors_service),
    current_user=Depends(get_current_user),
) -> TutorProfileRead:
    """Update tutor profile, including the weekly session cap."""
    profile = await service.update_profile(profile_id, payload, current_user)
    return TutorProfileRead.model_validate(profile)


@router.put("/profiles/{profile_id}/payout", response_model=TutorProfileRead)
async def update_payout(
    profile_id: UUID,
    payload: TutorPayoutUpdate,
    service: TutorsService = Depends(get_tutors_service),
    current_user=Depends(get_current_user),
) -> TutorProfileRead:
    """Record payout onboarding state."""
    profile = await service.update_payout(profile_id, payload, current_user)
    return TutorProfileRead.model_validate(profile)


@router.get("/profiles", response_model=Page[TutorProfileRead])
async def list_profiles(
    pagination=Depends(get_pagination_params),
    service: TutorsService = Depends(get_tutors_service),
) -> Page[TutorProfileRead]:
    """List tutor profiles."""
    items, total = await service.list_profiles(pagination.limit, pagination.offset)
    serialized = [TutorProfileRead.model_validate(item) for item in items]
    return build_page(serialized, total, pagination)
