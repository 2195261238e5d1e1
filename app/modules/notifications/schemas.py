"""Notifications schemas."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from app.core.enums import NotificationStatusEnum


class NotificationUpdateStatus(BaseModel):
    status: NotificationStatusEnum


class NotificationRead(BaseModel):
    """Booking, payment or payout message as shown to its recipient."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    source_event_id: UUID | None
    channel: str
    title: str
    body: str
    status: NotificationStatusEnum
    sent_at: datetime | None
    created_at: datetime
