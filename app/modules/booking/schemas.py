"""Booking schemas."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.core.enums import ConfirmationRoleEnum, SessionPaymentStatusEnum, SessionStatusEnum


class SessionCreate(BaseModel):
    """Select a slot (or a run of adjacent slots) of a tutor."""

    tutor_id: UUID
    start_at: datetime
    end_at: datetime
    course_id: UUID | None = None

    @model_validator(mode="after")
    def validate_range(self) -> "SessionCreate":
        if self.end_at <= self.start_at:
            raise ValueError("end_at must be after start_at")
        return self


class SessionCancelRequest(BaseModel):
    """Cancel session request."""

    reason: str | None = Field(default=None, max_length=512)


class SessionConfirmRequest(BaseModel):
    """Confirm that a session took place."""

    role: ConfirmationRoleEnum


class SessionRead(BaseModel):
    """Tutoring session response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    student_id: UUID
    tutor_id: UUID
    course_id: UUID | None
    start_at: datetime
    end_at: datetime
    status: SessionStatusEnum
    payment_status: SessionPaymentStatusEnum
    student_confirmed: bool
    tutor_confirmed: bool
    completion_date: datetime | None
    cancelled_at: datetime | None
    cancellation_reason: str | None
    created_at: datetime
    updated_at: datetime


class ConfirmationRead(BaseModel):
    """Result of a completion confirmation."""

    model_config = ConfigDict(from_attributes=True)

    both_confirmed: bool
    session: SessionRead
