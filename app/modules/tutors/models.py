"""Tutors ORM models."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base, BaseModelMixin


class TutorProfile(BaseModelMixin, Base):
    """Tutor profile linked to user account, including payout details."""

    __tablename__ = "tutor_profiles"

    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    display_name: Mapped[str] = mapped_column(String(128), nullable=False)
    bio: Mapped[str] = mapped_column(Text, default="", nullable=False)
    hourly_rate: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_weekly_sessions: Mapped[int | None] = mapped_column(Integer, nullable=True)
    payout_account_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payout_onboarding_complete: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_approved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    user = relationship("User", back_populates="tutor_profile")

    @property
    def payout_ready(self) -> bool:
        return bool(self.payout_account_id) and self.payout_onboarding_complete
