"""Identity API router."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from app.modules.identity.schemas import UserPreferencesUpdate, UserRead
from app.modules.identity.service import IdentityService, get_current_user, get_identity_service

router = APIRouter(prefix="/identity", tags=["identity"])


@router.get("/users/me", response_model=UserRead)
async def get_me(current_user=Depends(get_current_user)) -> UserRead:
    return UserRead.model_validate(current_user)


@router.patch("/users/me", response_model=UserRead)
async def update_me(
    payload: UserPreferencesUpdate,
    service: IdentityService = Depends(get_identity_service),
    current_user=Depends(get_current_user),
) -> UserRead:
    """Update display name or timezone (tutors' templates are read in this timezone)."""
    user = await service.update_preferences(current_user, payload)
    return UserRead.model_validate(user)
