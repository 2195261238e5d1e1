"""Booking ORM models."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Index, String, text
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base, BaseModelMixin, enum_column_type
from app.core.enums import SessionPaymentStatusEnum, SessionStatusEnum


class TutoringSession(BaseModelMixin, Base):
    """A booked tutoring session; never deleted, only cancelled."""

    __tablename__ = "tutoring_sessions"
    __table_args__ = (
        CheckConstraint("end_at > start_at", name="time_range"),
        Index(
            "uq_tutoring_sessions_active_slot",
            "tutor_id",
            "start_at",
            "end_at",
            unique=True,
            postgresql_where=text("status <> 'cancelled'"),
        ),
    )

    student_id: Mapped[UUID] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    tutor_id: Mapped[UUID] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    course_id: Mapped[UUID | None] = mapped_column(nullable=True)

    start_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    end_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    status: Mapped[SessionStatusEnum] = mapped_column(
        enum_column_type(SessionStatusEnum, "session_status_enum"),
        default=SessionStatusEnum.PENDING,
        nullable=False,
        index=True,
    )
    payment_status: Mapped[SessionPaymentStatusEnum] = mapped_column(
        enum_column_type(SessionPaymentStatusEnum, "session_payment_status_enum"),
        default=SessionPaymentStatusEnum.UNPAID,
        nullable=False,
    )

    student_confirmed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    tutor_confirmed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    completion_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)

    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
