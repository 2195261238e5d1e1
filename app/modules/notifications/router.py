"""Notifications API router."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends

from app.core.enums import NotificationStatusEnum
from app.modules.identity.service import get_current_user
from app.modules.notifications.schemas import NotificationRead, NotificationUpdateStatus
from app.modules.notifications.service import NotificationsService, get_notifications_service
from app.shared.pagination import Page, build_page, get_pagination_params

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("/my", response_model=Page[NotificationRead])
async def list_my_notifications(
    status: NotificationStatusEnum | None = None,
    pagination=Depends(get_pagination_params),
    service: NotificationsService = Depends(get_notifications_service),
    current_user=Depends(get_current_user),
) -> Page[NotificationRead]:
    """List the caller's notifications, newest first."""
    items, total = await service.list_my_notifications(current_user, pagination.limit, pagination.offset, status)
    return build_page([NotificationRead.model_validate(item) for item in items], total, pagination)


@router.patch("/{notification_id}/status", response_model=NotificationRead)
async def update_notification_status(
    notification_id: UUID,
    payload: NotificationUpdateStatus,
    service: NotificationsService = Depends(get_notifications_service),
    current_user=Depends(get_current_user),
) -> NotificationRead:
    notification = await service.update_status(notification_id, payload.status, current_user)
    return NotificationRead.model_validate(notification)
