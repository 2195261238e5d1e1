"""Tutors schemas."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class TutorProfileCreate(BaseModel):
    """Create tutor profile request."""

    user_id: UUID
    display_name: str = Field(min_length=2, max_length=128)
    bio: str = Field(default="", max_length=5000)
    hourly_rate: int = Field(default=0, ge=0)
    max_weekly_sessions: int | None = Field(default=None, ge=1, le=100)


class TutorProfileUpdate(BaseModel):
    """Update tutor profile request."""

    display_name: str | None = Field(default=None, min_length=2, max_length=128)
    bio: str | None = Field(default=None, max_length=5000)
    hourly_rate: int | None = Field(default=None, ge=0)
    max_weekly_sessions: int | None = Field(default=None, ge=1, le=100)
    is_approved: bool | None = None


class TutorPayoutUpdate(BaseModel):
    """Payout account state reported by onboarding (admin only)."""

    payout_account_id: str | None = Field(default=None, max_length=255)
    payout_onboarding_complete: bool


class TutorProfileRead(BaseModel):
    """Tutor profile response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    display_name: str
    bio: str
    hourly_rate: int
    max_weekly_sessions: int | None
    payout_onboarding_complete: bool
    is_approved: bool
    created_at: datetime
    updated_at: datetime
