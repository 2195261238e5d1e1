"""Availability ORM models."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import ForeignKey
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base, BaseModelMixin


class AvailabilityTemplate(BaseModelMixin, Base):
    """Recurring weekly availability of a tutor.

    ``windows`` maps weekday names to ordered ``{"start", "end"}`` HH:MM pairs,
    validated on write.
    """

    __tablename__ = "availability_templates"

    tutor_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    windows: Mapped[dict] = mapped_column(JSONB, default=dict, nullable=False)
