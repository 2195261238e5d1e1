"""Availability API router."""

from __future__ import annotations

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from app.core.config import get_settings
from app.modules.availability.schemas import (
    AvailabilityTemplateRead,
    AvailabilityTemplateUpdate,
    SlotRead,
)
from app.modules.availability.service import AvailabilityService, get_availability_service
from app.modules.identity.service import get_current_user

settings = get_settings()
router = APIRouter(prefix="/availability", tags=["availability"])


@router.get("/tutors/{tutor_id}/slots", response_model=list[SlotRead])
async def list_slots(
    tutor_id: UUID,
    start_date: date,
    num_days: int = Query(default=7, ge=1, le=settings.booking_slot_horizon_days),
    service: AvailabilityService = Depends(get_availability_service),
) -> list[SlotRead]:
    """List open and busy 30-minute slots for a tutor."""
    slots = await service.get_slots(tutor_id, start_date, num_days)
    return [SlotRead.model_validate(slot) for slot in slots]


@router.get("/tutors/{tutor_id}/template", response_model=AvailabilityTemplateRead)
async def get_template(
    tutor_id: UUID,
    service: AvailabilityService = Depends(get_availability_service),
) -> AvailabilityTemplateRead:
    """Return the weekly availability template of a tutor."""
    template = await service.get_template(tutor_id)
    return AvailabilityTemplateRead.model_validate(template)


@router.put("/tutors/{tutor_id}/template", response_model=AvailabilityTemplateRead)
async def update_template(
    tutor_id: UUID,
    payload: AvailabilityTemplateUpdate,
    service: AvailabilityService = Depends(get_availability_service),
    current_user=Depends(get_current_user),
) -> AvailabilityTemplateRead:
    """Replace the weekly availability template of a tutor."""
    template = await service.update_template(tutor_id, payload, current_user)
    return AvailabilityTemplateRead.model_validate(template)
