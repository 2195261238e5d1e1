"""Availability repository layer."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.availability.models import AvailabilityTemplate


class AvailabilityRepository:
    """DB operations for availability templates."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_template_by_tutor_id(self, tutor_id: UUID) -> AvailabilityTemplate | None:
        stmt = select(AvailabilityTemplate).where(AvailabilityTemplate.tutor_id == tutor_id)
        return await self.session.scalar(stmt)

    async def save_template(self, tutor_id: UUID, windows: dict) -> AvailabilityTemplate:
        template = await self.get_template_by_tutor_id(tutor_id)
        if template is None:
            template = AvailabilityTemplate(tutor_id=tutor_id, windows=windows)
            self.session.add(template)
        else:
            template.windows = windows
        await self.session.flush()
        return template
