"""Booking API router."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, status

from app.modules.booking.schemas import (
    ConfirmationRead,
    SessionCancelRequest,
    SessionConfirmRequest,
    SessionCreate,
    SessionRead,
)
from app.modules.booking.service import BookingService, get_booking_service
from app.modules.identity.service import get_current_user
from app.shared.pagination import Page, build_page, get_pagination_params

router = APIRouter(prefix="/booking", tags=["booking"])


@router.post("/sessions", response_model=SessionRead, status_code=status.HTTP_201_CREATED)
async def select_slot(
    payload: SessionCreate,
    service: BookingService = Depends(get_booking_service),
    current_user=Depends(get_current_user),
) -> SessionRead:
    """Book a tutor slot; the session stays pending until paid."""
    tutoring_session = await service.select_slot(payload, current_user)
    return SessionRead.model_validate(tutoring_session)


@router.get("/sessions/my", response_model=Page[SessionRead])
async def list_my_sessions(
    pagination=Depends(get_pagination_params),
    service: BookingService = Depends(get_booking_service),
    current_user=Depends(get_current_user),
) -> Page[SessionRead]:
    """List sessions for current user."""
    items, total = await service.list_sessions(current_user, pagination.limit, pagination.offset)
    serialized = [SessionRead.model_validate(item) for item in items]
    return build_page(serialized, total, pagination)


@router.get("/sessions/{session_id}", response_model=SessionRead)
async def get_session(
    session_id: UUID,
    service: BookingService = Depends(get_booking_service),
    current_user=Depends(get_current_user),
) -> SessionRead:
    """Return one session."""
    tutoring_session = await service.get_session(session_id, current_user)
    return SessionRead.model_validate(tutoring_session)


@router.post("/sessions/{session_id}/confirm", response_model=ConfirmationRead)
async def confirm_completion(
    session_id: UUID,
    payload: SessionConfirmRequest,
    service: BookingService = Depends(get_booking_service),
    current_user=Depends(get_current_user),
) -> ConfirmationRead:
    """Confirm the session took place (student or tutor side)."""
    result = await service.confirm_completion(session_id, payload.role, current_user)
    return ConfirmationRead.model_validate(result)


@router.post("/sessions/{session_id}/auto-confirm", response_model=ConfirmationRead)
async def auto_confirm_session(
    session_id: UUID,
    service: BookingService = Depends(get_booking_service),
    current_user=Depends(get_current_user),
) -> ConfirmationRead:
    """Confirm for both parties (admin task endpoint)."""
    result = await service.auto_confirm_session(session_id, current_user)
    return ConfirmationRead.model_validate(result)


@router.post("/sessions/{session_id}/start", response_model=SessionRead)
async def start_session(
    session_id: UUID,
    service: BookingService = Depends(get_booking_service),
    current_user=Depends(get_current_user),
) -> SessionRead:
    """Mark a scheduled session as in progress."""
    tutoring_session = await service.start_session(session_id, current_user)
    return SessionRead.model_validate(tutoring_session)


@router.post("/sessions/{session_id}/cancel", response_model=SessionRead)
async def cancel_session(
    session_id: UUID,
    payload: SessionCancelRequest,
    service: BookingService = Depends(get_booking_service),
    current_user=Depends(get_current_user),
) -> SessionRead:
    """Cancel a session."""
    tutoring_session = await service.cancel_session(session_id, payload, current_user)
    return SessionRead.model_validate(tutoring_session)
